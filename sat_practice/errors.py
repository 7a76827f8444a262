"""Error taxonomy shared by the generation pipeline, sessions and storage."""
from __future__ import annotations


class SatPracticeError(Exception):
    """Base class for every error this package raises on purpose."""


class ConfigError(SatPracticeError):
    """Required configuration is missing or invalid."""


class GenerationError(SatPracticeError):
    """The completion endpoint failed or returned nothing usable."""


class ResponseParseError(GenerationError):
    """Model output could not be parsed as structured data."""


class NoValidQuestionsError(GenerationError):
    """Model output parsed, but no candidate survived validation."""


class NoSelectionError(SatPracticeError):
    """An answer was submitted without a selected option."""


class SessionStateError(SatPracticeError):
    """A transition was requested that the session's state doesn't allow."""


class NotFoundError(SatPracticeError):
    """A requested record does not exist."""


class PersistenceError(SatPracticeError):
    """A read or write against the document store failed."""
