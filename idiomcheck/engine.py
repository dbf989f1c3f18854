"""
Analysis engine: drives the front end, the Semantic Index and every enabled
check over a set of translation units.

Each file is one unit of work on a ``ThreadPoolExecutor``.  Within a file
the Syntax Model and Semantic Index are built once and shared read-only by
all checks (optionally run in their own pool).  A parse error stops only
its own file; a crashing check (or any other failure inside one file's
work) becomes an internal-error diagnostic and the rest carry on.
Results go through the ``DiagnosticAggregator``, which
fixes the final order so identical input yields identical reports.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from idiomcheck.aggregator import AnalysisResult, DiagnosticAggregator
from idiomcheck.config import EngineConfig, load_config
from idiomcheck.cpp_frontend import CppFrontEnd
from idiomcheck.diagnostics import PARSE_ERROR_RULE_ID, Diagnostic, DiagnosticKind, Severity
from idiomcheck.errors import CheckInternalError, ParseError
from idiomcheck.rule_engine import CheckContext, CheckRegistry, RuleCheck, default_registry
from idiomcheck.semantic_index import SemanticIndex
from idiomcheck.suppressions import SuppressionIndex
from idiomcheck.syntax_model import SourceSpan, SyntaxTree

logger = logging.getLogger(__name__)

SEMANTIC_INDEX_RULE_ID = "SemanticIndex"
FILE_FAILURE_RULE_ID = "AnalysisEngine"

Unit = Tuple[str, Union[SyntaxTree, ParseError]]


def _start_span(file_id: str, line: int = 1, column: int = 1, offset: int = 0) -> SourceSpan:
    return SourceSpan(file=file_id, start_offset=offset, start_line=line, start_col=column,
                      end_offset=offset, end_line=line, end_col=column)


def parse_error_diagnostic(error: ParseError) -> Diagnostic:
    return Diagnostic(
        rule_id=PARSE_ERROR_RULE_ID,
        severity=Severity.ERROR,
        span=_start_span(error.file_id, error.line, error.column, error.offset),
        message=error.message,
        kind=DiagnosticKind.PARSE_ERROR,
    )


def internal_error_diagnostic(error: CheckInternalError) -> Diagnostic:
    return Diagnostic(
        rule_id=error.rule_id,
        severity=Severity.INFO,
        span=_start_span(error.file_id),
        message=f"Internal error in '{error.rule_id}': "
                f"{type(error.cause).__name__}: {error.cause}",
        kind=DiagnosticKind.INTERNAL_ERROR,
    )


class AnalysisEngine:
    """Runs the registered idiom checks over C++ translation units.

    Example::

        engine = AnalysisEngine({"rules": {"MagicNumber": {"enabled": False}}})
        result = engine.analyze_sources([("a.cpp", source)])
        for diagnostic in result.diagnostics:
            print(diagnostic)
    """

    def __init__(self, config: Union[None, Mapping[str, Any], EngineConfig] = None,
                 registry: Optional[CheckRegistry] = None,
                 front_end: Optional[CppFrontEnd] = None):
        self.registry = registry if registry is not None else default_registry()
        self.config = load_config(config, self.registry)
        self.front_end = front_end if front_end is not None else CppFrontEnd(
            tolerate_syntax_errors=self.config.tolerate_syntax_errors)
        self.enabled_rules: List[str] = [r for r in self.registry.rule_ids()
                                         if self.config.is_enabled(r)]
        logger.debug("Engine ready: %d of %d rules enabled", len(self.enabled_rules), len(self.registry))

    # ── public entry points ──

    def analyze(self, units: Iterable[Unit]) -> AnalysisResult:
        """Check already-parsed units; a ``ParseError`` in place of a tree is reported."""
        return self._run(list(units), self._analyze_unit)

    def analyze_sources(self, sources: Iterable[Tuple[str, Union[str, bytes]]]) -> AnalysisResult:
        """Parse and check ``(file_id, source_text)`` pairs."""
        return self._run(list(sources), self._analyze_source)

    def analyze_files(self, paths: Sequence[str]) -> AnalysisResult:
        return self._run([(p, p) for p in paths], self._analyze_path)

    def analyze_tree(self, tree: SyntaxTree) -> List[Diagnostic]:
        """Diagnostics for one tree, unsorted and without aggregation."""
        return self._check_tree(tree)

    # ── workers ──

    def _run(self, items: List[Tuple[str, Any]], worker) -> AnalysisResult:
        started = time.monotonic()
        aggregator = DiagnosticAggregator()
        if len(items) <= 1 or self.config.max_workers == 1:
            for file_id, payload in items:
                self._guarded(worker, file_id, payload, aggregator)
        else:
            with ThreadPoolExecutor(max_workers=self.config.max_workers,
                                    thread_name_prefix="idiomcheck") as pool:
                futures = [pool.submit(self._guarded, worker, file_id, payload, aggregator)
                           for file_id, payload in items]
                for future in futures:
                    future.result()
        result = aggregator.finalize()
        logger.info("Analysed %d file(s) in %.1f ms: %d diagnostic(s)%s",
                    len(items), (time.monotonic() - started) * 1000.0, len(result),
                    " (with errors)" if result.had_errors else "")
        return result

    @staticmethod
    def _guarded(worker, file_id: str, payload: Any, aggregator: DiagnosticAggregator) -> None:
        """Run one file's worker; an unexpected failure costs that file only."""
        try:
            worker(file_id, payload, aggregator)
        except Exception as e:
            failure = CheckInternalError(FILE_FAILURE_RULE_ID, file_id, e)
            logger.exception("%s", failure)
            aggregator.add(internal_error_diagnostic(failure))

    def _analyze_unit(self, file_id: str, unit: Union[SyntaxTree, ParseError],
                      aggregator: DiagnosticAggregator) -> None:
        if isinstance(unit, ParseError):
            self._report_parse_error(unit, aggregator)
            return
        aggregator.record_source(file_id, unit.source_bytes)
        aggregator.extend(self._check_tree(unit))

    def _analyze_source(self, file_id: str, source: Union[str, bytes],
                        aggregator: DiagnosticAggregator) -> None:
        try:
            tree = self.front_end.parse(file_id, source)
        except ParseError as e:
            self._report_parse_error(e, aggregator)
            return
        self._analyze_unit(file_id, tree, aggregator)

    def _analyze_path(self, file_id: str, path: str, aggregator: DiagnosticAggregator) -> None:
        try:
            tree = self.front_end.parse_file(path)
        except ParseError as e:
            self._report_parse_error(e, aggregator)
            return
        self._analyze_unit(tree.file_id, tree, aggregator)

    @staticmethod
    def _report_parse_error(error: ParseError, aggregator: DiagnosticAggregator) -> None:
        if error.message == "binary file":
            logger.warning("Skipping %s: binary file", error.file_id)
        else:
            logger.error("Parse error in %s", error)
        aggregator.add(parse_error_diagnostic(error))

    # ── per file ──

    def _check_tree(self, tree: SyntaxTree) -> List[Diagnostic]:
        suppressions = SuppressionIndex.from_tree(tree)
        try:
            index = SemanticIndex(tree)
        except Exception as e:
            failure = CheckInternalError(SEMANTIC_INDEX_RULE_ID, tree.file_id, e)
            logger.exception("%s", failure)
            return [internal_error_diagnostic(failure)]

        checks = self.registry.create_all(self.enabled_rules)
        if self.config.parallel_checks and len(checks) > 1:
            with ThreadPoolExecutor(max_workers=self.config.max_workers,
                                    thread_name_prefix="idiomcheck-check") as pool:
                batches = list(pool.map(lambda c: self._run_check(c, tree, index), checks))
        else:
            batches = [self._run_check(check, tree, index) for check in checks]

        diagnostics = [d for batch in batches for d in batch]
        kept = suppressions.filter(diagnostics)
        logger.debug("%s: %d check(s), %d diagnostic(s)", tree.file_id, len(checks), len(kept))
        return kept

    def _run_check(self, check: RuleCheck, tree: SyntaxTree, index: SemanticIndex) -> List[Diagnostic]:
        severity = self.config.effective_severity(check.rule_id, check.default_severity)
        ctx = CheckContext(tree, index, self.config.options, check.rule_id, severity)
        try:
            return list(check.run(ctx))
        except Exception as e:
            failure = CheckInternalError(check.rule_id, tree.file_id, e)
            logger.exception("%s", failure)
            return [internal_error_diagnostic(failure)]
