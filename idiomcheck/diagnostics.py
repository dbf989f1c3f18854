"""
Diagnostic records produced by checks and consumed by reporters.

Diagnostics are frozen pydantic models so a reporter can serialise them
with ``model_dump()`` / ``model_dump_json()`` without extra glue.
"""

from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict

from idiomcheck.syntax_model import SourceSpan


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def at_least(self, threshold: "Severity") -> bool:
        return self.rank >= threshold.rank


_SEVERITY_RANK = {Severity.INFO: 0, Severity.WARNING: 1, Severity.ERROR: 2}


class DiagnosticKind(str, Enum):
    VIOLATION = "violation"
    PARSE_ERROR = "parse_error"
    INTERNAL_ERROR = "internal_error"


PARSE_ERROR_RULE_ID = "ParseError"


class Diagnostic(BaseModel):
    model_config = ConfigDict(frozen=True)

    rule_id: str
    severity: Severity
    span: SourceSpan
    message: str
    kind: DiagnosticKind = DiagnosticKind.VIOLATION
    related: Tuple[SourceSpan, ...] = ()
    suggested_fix: Optional[str] = None

    @property
    def file(self) -> str:
        return self.span.file

    @property
    def line(self) -> int:
        return self.span.start_line

    @property
    def is_error(self) -> bool:
        """True for parse and internal errors (not for rule violations)."""
        return self.kind is not DiagnosticKind.VIOLATION

    def sort_key(self) -> Tuple:
        """Total order: file, start offset, rule id, then tie-breakers."""
        return (self.span.file, self.span.start_offset, self.rule_id,
                self.span.end_offset, self.message, self.kind.value)

    def dedup_key(self) -> Tuple:
        return (self.rule_id, self.kind.value, self.span.file, self.span.start_offset,
                self.span.end_offset, self.message)

    def __str__(self) -> str:
        text = f"{self.span}: {self.severity.value}: {self.message} [{self.rule_id}]"
        if self.suggested_fix:
            text += f"\n    suggestion: {self.suggested_fix}"
        return text
