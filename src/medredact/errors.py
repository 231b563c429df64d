"""Exceptions raised by medredact.

Only initialization errors escape the pipeline.  ExtractionError is raised
inside the extraction client and converted into a rules-only result.
"""


class RedactorError(Exception):
    """Base exception for redaction engine errors."""


class LexiconError(RedactorError):
    """Raised when a lexicon file cannot be read or decoded."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"Lexicon error for {path}: {message}")


class PatternError(RedactorError):
    """Raised when a detection rule fails to compile."""

    def __init__(self, label: str, message: str):
        self.label = label
        super().__init__(f"Invalid pattern for {label}: {message}")


class ExtractionError(RedactorError):
    """Raised when the extraction model is unavailable or its output is unusable."""

    def __init__(self, message: str):
        super().__init__(f"Entity extraction failed: {message}")


class StoreError(RedactorError):
    """Raised when the mapping store key is invalid or cannot decrypt a mapping."""

    def __init__(self, message: str):
        super().__init__(f"Mapping store error: {message}")
