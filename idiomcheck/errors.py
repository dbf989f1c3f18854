"""
Exception taxonomy for the idiom checker.

  • ParseError          : the front end could not build a syntax tree
  • ConfigurationError  : caller misuse detected before any file is analysed
  • CheckInternalError  : a rule check failed unexpectedly

Unresolved identifiers are *not* errors: they resolve to the Unknown symbol
(see ``semantic_index.UNKNOWN_SYMBOL``).
"""

from typing import Optional


class IdiomCheckError(Exception):
    """Base class for every error raised by idiomcheck."""


class ParseError(IdiomCheckError):
    """Raised by a front end when a translation unit has no usable syntax tree."""

    def __init__(self, file_id: str, message: str, line: int = 1, column: int = 1,
                 offset: int = 0):
        super().__init__(f"{file_id}:{line}:{column}: {message}")
        self.file_id = file_id
        self.message = message
        self.line = line
        self.column = column
        self.offset = offset


class ConfigurationError(IdiomCheckError):
    """Unknown rule ids, malformed values or conflicting overrides."""


class CheckInternalError(IdiomCheckError):
    """A check raised while analysing one file; converted to a diagnostic."""

    def __init__(self, rule_id: str, file_id: str, cause: Optional[BaseException] = None):
        detail = f"{type(cause).__name__}: {cause}" if cause is not None else "unknown failure"
        super().__init__(f"check {rule_id} failed on {file_id}: {detail}")
        self.rule_id = rule_id
        self.file_id = file_id
        self.cause = cause
