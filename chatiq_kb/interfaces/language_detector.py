"""Abstract base class for document language detection."""

from __future__ import annotations

from abc import ABC, abstractmethod

from chatiq_kb.models.document import LanguageDetection


# Concrete implementation: LangdetectLanguageDetector (chatiq_kb/providers/language/)
class ILanguageDetector(ABC):
    """Contract for detecting the dominant language of a text."""

    @abstractmethod
    def detect(self, text: str) -> LanguageDetection:
        """Return the detected tag and confidence.

        Both fields are ``None`` when the text is too short or no language
        reaches the detector's confidence floor.  Never raises for ordinary
        text input.
        """
