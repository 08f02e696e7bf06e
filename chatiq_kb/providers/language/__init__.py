"""Language detection providers."""

from chatiq_kb.providers.language.langdetect_detector import (
    LangdetectLanguageDetector,
    normalize_language_tag,
)

__all__ = ["LangdetectLanguageDetector", "normalize_language_tag"]
