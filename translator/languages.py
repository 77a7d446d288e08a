"""Languages offered for translation."""

from __future__ import annotations

from enum import Enum


class Language(Enum):
    CHINESE = "Chinese"
    ENGLISH = "English"
    JAPANESE = "Japanese"
    KOREAN = "Korean"
    FRENCH = "French"
    GERMAN = "German"
    SPANISH = "Spanish"
    RUSSIAN = "Russian"

    @property
    def display_name(self) -> str:
        return self.value

    @property
    def code(self) -> str:
        """ISO 639-1 code, used on the command line and in logs."""
        return _CODES[self]

    @classmethod
    def from_code(cls, code: str) -> Language:
        """
        Look up a language by ISO code or display name, case-insensitively.

        Raises:
            ValueError: If nothing matches
        """
        needle = code.strip().lower()
        for language in cls:
            if needle in (language.code, language.display_name.lower()):
                return language
        raise ValueError(f"Unsupported language: {code!r}")


_CODES: dict[Language, str] = {
    Language.CHINESE: "zh",
    Language.ENGLISH: "en",
    Language.JAPANESE: "ja",
    Language.KOREAN: "ko",
    Language.FRENCH: "fr",
    Language.GERMAN: "de",
    Language.SPANISH: "es",
    Language.RUSSIAN: "ru",
}
