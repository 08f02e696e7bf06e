"""Allow ``python -m chatiq_kb.cli`` execution."""

import sys

from chatiq_kb.cli.kb import main

sys.exit(main())
