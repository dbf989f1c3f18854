"""
Diagnostic aggregation: thread-safe collection, span clamping, de-duplication
and the deterministic final order.
"""

import logging
import threading
from collections import defaultdict
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Tuple

from idiomcheck.diagnostics import Diagnostic, Severity
from idiomcheck.syntax_model import SourceSpan

logger = logging.getLogger(__name__)


class ExitStatus(str, Enum):
    CLEAN = "clean"
    VIOLATIONS = "violations"
    FAILED = "failed"


class AnalysisResult:
    """Ordered, immutable outcome of one engine run."""

    def __init__(self, diagnostics: Tuple[Diagnostic, ...], files: Tuple[str, ...] = ()):
        self.diagnostics = diagnostics
        self.files = files

    def has_findings(self, threshold: Severity = Severity.WARNING) -> bool:
        """Any diagnostic at or above ``threshold``."""
        return any(d.severity.at_least(threshold) for d in self.diagnostics)

    @property
    def had_errors(self) -> bool:
        """A file failed to parse or a check failed internally."""
        return any(d.is_error for d in self.diagnostics)

    def exit_status(self, threshold: Severity = Severity.WARNING) -> ExitStatus:
        if self.had_errors:
            return ExitStatus.FAILED
        if self.has_findings(threshold):
            return ExitStatus.VIOLATIONS
        return ExitStatus.CLEAN

    def by_rule(self) -> Dict[str, List[Diagnostic]]:
        grouped: Dict[str, List[Diagnostic]] = defaultdict(list)
        for diagnostic in self.diagnostics:
            grouped[diagnostic.rule_id].append(diagnostic)
        return dict(grouped)

    def for_file(self, file_id: str) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.file == file_id]

    def __len__(self) -> int:
        return len(self.diagnostics)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.diagnostics)

    def __repr__(self) -> str:
        return f"AnalysisResult({len(self.diagnostics)} diagnostics, {len(self.files)} files)"


class DiagnosticAggregator:
    """The one mutable structure shared between workers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._diagnostics: List[Diagnostic] = []
        self._sources: Dict[str, bytes] = {}

    def record_source(self, file_id: str, source: bytes) -> None:
        with self._lock:
            self._sources[file_id] = source

    def add(self, diagnostic: Diagnostic) -> None:
        with self._lock:
            self._diagnostics.append(diagnostic)

    def extend(self, diagnostics: Iterable[Diagnostic]) -> None:
        batch = list(diagnostics)
        with self._lock:
            self._diagnostics.extend(batch)

    def finalize(self) -> AnalysisResult:
        """Clamp, de-duplicate and sort; call once all workers are done."""
        with self._lock:
            collected = list(self._diagnostics)
            sources = dict(self._sources)

        unique: Dict[Tuple, Diagnostic] = {}
        for diagnostic in collected:
            diagnostic = self._clamped(diagnostic, sources)
            unique.setdefault(diagnostic.dedup_key(), diagnostic)
        ordered = tuple(sorted(unique.values(), key=Diagnostic.sort_key))
        if len(ordered) != len(collected):
            logger.debug("Dropped %d duplicate diagnostic(s)", len(collected) - len(ordered))
        return AnalysisResult(ordered, tuple(sorted(sources)))

    @staticmethod
    def _clamped(diagnostic: Diagnostic, sources: Dict[str, bytes]) -> Diagnostic:
        source = sources.get(diagnostic.file)
        if source is None:
            return diagnostic
        span = _clamp_span(diagnostic.span, source)
        related = tuple(_clamp_span(r, sources.get(r.file, source)) for r in diagnostic.related)
        if span is diagnostic.span and related == diagnostic.related:
            return diagnostic
        logger.warning("Clamped span of %s diagnostic in %s to source length %d",
                       diagnostic.rule_id, diagnostic.file, len(source))
        return diagnostic.model_copy(update={"span": span, "related": related})


def _position(source: bytes, offset: int) -> Tuple[int, int]:
    """1-based (line, column) of a byte offset."""
    line_start = source.rfind(b"\n", 0, offset) + 1
    return source.count(b"\n", 0, offset) + 1, offset - line_start + 1


def _clamp_span(span: SourceSpan, source: bytes) -> SourceSpan:
    length = len(source)
    if 0 <= span.start_offset <= span.end_offset <= length:
        return span
    start = min(max(span.start_offset, 0), length)
    end = min(max(span.end_offset, start), length)
    update = {"start_offset": start, "end_offset": end}
    if start != span.start_offset:
        update["start_line"], update["start_col"] = _position(source, start)
    if end != span.end_offset:
        update["end_line"], update["end_col"] = _position(source, end)
    return span.model_copy(update=update)
