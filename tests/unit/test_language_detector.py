"""Unit tests for LangdetectLanguageDetector and tag normalisation."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from langdetect import LangDetectException
from langdetect.language import Language

from chatiq_kb.providers.language.langdetect_detector import (
    LangdetectLanguageDetector,
    normalize_language_tag,
)

_MODULE = "chatiq_kb.providers.language.langdetect_detector"

_ENGLISH = (
    "The quick brown fox jumps over the lazy dog while the farmer watches "
    "from the porch and wonders whether the harvest will come early this year."
)


class TestNormalizeLanguageTag:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("EN", "en"),
            ("zh-cn", "zh-CN"),
            ("ZH-tw", "zh-TW"),
            (" pt-br ", "pt-BR"),
            ("sr-Latn", "sr-Latn"),
            ("", ""),
        ],
    )
    def test_normalize(self, raw: str, expected: str) -> None:
        assert normalize_language_tag(raw) == expected


class TestDetect:
    def test_english_sentence(self) -> None:
        result = LangdetectLanguageDetector().detect(_ENGLISH)

        assert result.language == "en"
        assert 0.6 <= result.confidence <= 1.0

    @pytest.mark.parametrize("text", ["", "12345 67890", "ok ok"])
    def test_too_few_letters(self, text: str) -> None:
        result = LangdetectLanguageDetector().detect(text)

        assert result.language is None
        assert result.confidence is None

    def test_low_confidence_is_undetected(self) -> None:
        with patch(
            f"{_MODULE}.detect_langs",
            return_value=[Language("en", 0.4), Language("de", 0.35)],
        ):
            result = LangdetectLanguageDetector().detect(_ENGLISH)

        assert result.language is None

    def test_top_candidate_wins(self) -> None:
        with patch(
            f"{_MODULE}.detect_langs",
            return_value=[Language("de", 0.2), Language("zh-cn", 0.79999)],
        ):
            result = LangdetectLanguageDetector().detect(_ENGLISH)

        assert result.language == "zh-CN"
        assert result.confidence == 0.8

    def test_detector_exception_is_undetected(self) -> None:
        with patch(f"{_MODULE}.detect_langs", side_effect=LangDetectException(0, "no features")):
            result = LangdetectLanguageDetector().detect(_ENGLISH)

        assert result.language is None

    def test_custom_floor(self) -> None:
        with patch(f"{_MODULE}.detect_langs", return_value=[Language("fr", 0.5)]):
            result = LangdetectLanguageDetector(min_confidence=0.4).detect(_ENGLISH)

        assert result.language == "fr"
