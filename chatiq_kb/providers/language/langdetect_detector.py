"""Language detection backed by the ``langdetect`` package.

``langdetect`` is probabilistic; seeding its factory makes results
deterministic across runs.  Texts with fewer than 20 letters, or whose top
candidate falls below the confidence floor, are reported as undetected.
"""

from __future__ import annotations

import structlog
from langdetect import DetectorFactory, LangDetectException, detect_langs

from chatiq_kb.interfaces.language_detector import ILanguageDetector
from chatiq_kb.models.document import LanguageDetection

DetectorFactory.seed = 0

logger = structlog.get_logger(logger_name=__name__)

_SAMPLE_CHARS = 5000
_MIN_LETTER_COUNT = 20
_MIN_CONFIDENCE = 0.6


def normalize_language_tag(tag: str) -> str:
    """Canonicalise a BCP-47-ish tag: ``"ZH-cn"`` -> ``"zh-CN"``.

    The primary subtag is lower-cased and any two-letter region subtag is
    upper-cased; other subtags are left as written.
    """
    trimmed = tag.strip()
    if not trimmed:
        return trimmed
    primary, *rest = trimmed.split("-")
    parts = [primary.lower()] + [p.upper() if len(p) == 2 else p for p in rest]
    return "-".join(p for p in parts if p)


class LangdetectLanguageDetector(ILanguageDetector):
    """Detect a text's dominant language with ``langdetect``.

    Parameters
    ----------
    min_confidence:
        Probability the top candidate must reach to be reported.
    """

    def __init__(self, min_confidence: float = _MIN_CONFIDENCE) -> None:
        self._min_confidence = min_confidence

    def detect(self, text: str) -> LanguageDetection:
        sample = (text or "")[:_SAMPLE_CHARS]
        letters = sum(1 for ch in sample if ch.isalpha())
        if letters < _MIN_LETTER_COUNT:
            return LanguageDetection()

        try:
            candidates = detect_langs(sample)
        except LangDetectException as exc:
            logger.debug("language_detection_failed", error=str(exc))
            return LanguageDetection()
        if not candidates:
            return LanguageDetection()

        top = max(candidates, key=lambda entry: entry.prob)
        if top.prob < self._min_confidence:
            return LanguageDetection()
        return LanguageDetection(
            language=normalize_language_tag(top.lang),
            confidence=round(min(float(top.prob), 1.0), 4),
        )
