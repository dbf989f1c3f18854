"""
End-to-end engine tests.

Covers:
  1. The reference scenarios (full diagnostic set per input)
  2. Determinism and ordering across worker threads
  3. Parse errors and internal check failures
  4. Configuration: overrides, disabled rules, bad input
  5. Inline suppressions and exit status
"""

import os
import sys
import tempfile
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from idiomcheck.aggregator import DiagnosticAggregator, ExitStatus
from idiomcheck.checks_expressions import BoolLiteralComparisonCheck
from idiomcheck.cpp_frontend import CppFrontEnd
from idiomcheck.diagnostics import PARSE_ERROR_RULE_ID, DiagnosticKind, Severity
from idiomcheck.engine import AnalysisEngine
from idiomcheck.errors import ConfigurationError, ParseError
from idiomcheck.rule_engine import CheckRegistry, RuleCheck
from idiomcheck.syntax_model import SourceSpan


SCENARIO_LOOP = """\
int total() {
    int sum = 0;
    for (size_t i = 0; i < 5; i++) {
        sum += i;
    }
    return sum;
}
"""

SCENARIO_BOOL_RETURN = """\
bool isPositive(int x) {
    if (x > 0) {
        return true;
    } else {
        return false;
    }
}
"""

SCENARIO_CONSTRUCTOR = """\
class Point {
public:
    Point(int x, int y) {
        x_ = x;
        y_ = y;
    }
private:
    int x_;
    int y_;
};
"""

SCENARIO_UNREACHABLE = "int f() { return 1; int unused = 2; }\n"

SCENARIO_BOOL_COMPARE = """\
void g();
void f(bool a) {
    if (a == true) {
        g();
    }
}
"""


def _rules(result):
    return [d.rule_id for d in result.diagnostics]


def _span_text(source: str, diagnostic) -> str:
    return source[diagnostic.span.start_offset:diagnostic.span.end_offset]


class _Exploding(RuleCheck):
    rule_id = "MagicNumber"

    def run(self, ctx):
        raise RuntimeError("boom")


class _FlakyFrontEnd(CppFrontEnd):

    def parse(self, file_id, source):
        if file_id == "bad.cpp":
            raise RuntimeError("front end fell over")
        return super().parse(file_id, source)


class _OutOfBounds(RuleCheck):
    rule_id = "UnusedVariable"

    def run(self, ctx):
        span = SourceSpan(file=ctx.file_id, start_offset=5, start_line=1, start_col=6,
                          end_offset=10_000, end_line=99, end_col=1)
        return [self.report(ctx, span, "past the end")]


# ═══════════════════════════════════════════════════════════════════════
#  Scenarios
# ═══════════════════════════════════════════════════════════════════════

class TestScenarios(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.engine = AnalysisEngine()

    def analyze(self, source: str):
        return self.engine.analyze_sources([("scenario.cpp", source)])

    def test_post_increment_in_loop(self):
        result = self.analyze(SCENARIO_LOOP)
        self.assertEqual(_rules(result), ["PreferPreIncrement"])
        self.assertEqual(_span_text(SCENARIO_LOOP, result.diagnostics[0]), "i++")

    def test_boolean_return(self):
        result = self.analyze(SCENARIO_BOOL_RETURN)
        self.assertEqual(_rules(result), ["BooleanReturnIfElse"])
        self.assertIn("return x > 0;", result.diagnostics[0].message)

    def test_constructor_assignments(self):
        result = self.analyze(SCENARIO_CONSTRUCTOR)
        self.assertEqual(_rules(result), ["PreferMemberInitList", "PreferMemberInitList"])
        self.assertIn("'x_'", result.diagnostics[0].message)
        self.assertIn("'y_'", result.diagnostics[1].message)

    def test_unreachable_and_unused(self):
        result = self.analyze(SCENARIO_UNREACHABLE)
        self.assertEqual(_rules(result), ["UnreachableCode", "UnusedVariable"])
        unreachable, unused = result.diagnostics
        self.assertEqual(_span_text(SCENARIO_UNREACHABLE, unreachable), "int unused = 2;")
        self.assertIn("'unused'", unused.message)

    def test_bool_literal_comparison(self):
        result = self.analyze(SCENARIO_BOOL_COMPARE)
        self.assertEqual(_rules(result), ["BoolLiteralComparison"])
        self.assertEqual(result.diagnostics[0].suggested_fix, "a")

    def test_applied_fix_is_clean(self):
        """Re-analysing with the suggestion applied leaves nothing for that rule."""
        for source in (SCENARIO_LOOP, SCENARIO_BOOL_COMPARE):
            first = self.analyze(source).diagnostics[0]
            fixed = (source[:first.span.start_offset] + first.suggested_fix
                     + source[first.span.end_offset:])
            again = self.analyze(fixed)
            self.assertEqual([d for d in again.diagnostics if d.rule_id == first.rule_id], [])


# ═══════════════════════════════════════════════════════════════════════
#  Ordering
# ═══════════════════════════════════════════════════════════════════════

class TestDeterminism(unittest.TestCase):

    SOURCES = [
        ("b.cpp", SCENARIO_UNREACHABLE),
        ("a.cpp", SCENARIO_LOOP + SCENARIO_BOOL_RETURN),
        ("c.cpp", SCENARIO_CONSTRUCTOR + SCENARIO_BOOL_COMPARE),
        ("d.cpp", "int area(int w) { return w * 42 + 7; }\n"),
    ]

    def test_two_runs_identical(self):
        engine = AnalysisEngine({"max_workers": 4})
        first = engine.analyze_sources(self.SOURCES)
        second = engine.analyze_sources(list(reversed(self.SOURCES)))
        self.assertEqual(first.diagnostics, second.diagnostics)
        self.assertEqual([str(d) for d in first], [str(d) for d in second])

    def test_parallel_matches_sequential(self):
        parallel = AnalysisEngine({"max_workers": 4, "parallel_checks": True}).analyze_sources(self.SOURCES)
        sequential = AnalysisEngine({"max_workers": 1}).analyze_sources(self.SOURCES)
        self.assertEqual(parallel.diagnostics, sequential.diagnostics)

    def test_total_order(self):
        result = AnalysisEngine({"max_workers": 4}).analyze_sources(self.SOURCES)
        keys = [(d.file, d.span.start_offset, d.rule_id) for d in result]
        self.assertEqual(keys, sorted(keys))
        self.assertEqual(result.files, ("a.cpp", "b.cpp", "c.cpp", "d.cpp"))

    def test_duplicates_removed(self):
        engine = AnalysisEngine()
        tree = CppFrontEnd().parse("dup.cpp", SCENARIO_BOOL_COMPARE)
        result = engine.analyze([("dup.cpp", tree), ("dup.cpp", tree)])
        self.assertEqual(_rules(result), ["BoolLiteralComparison"])


# ═══════════════════════════════════════════════════════════════════════
#  Failures
# ═══════════════════════════════════════════════════════════════════════

class TestFailures(unittest.TestCase):

    def test_parse_error_does_not_stop_other_files(self):
        result = AnalysisEngine().analyze_sources([
            ("bad.cpp", "int f( {\n"),
            ("good.cpp", SCENARIO_UNREACHABLE),
        ])
        bad = result.for_file("bad.cpp")
        self.assertEqual(len(bad), 1)
        self.assertEqual(bad[0].rule_id, PARSE_ERROR_RULE_ID)
        self.assertIs(bad[0].kind, DiagnosticKind.PARSE_ERROR)
        self.assertEqual(bad[0].severity, Severity.ERROR)
        self.assertEqual([d.rule_id for d in result.for_file("good.cpp")],
                         ["UnreachableCode", "UnusedVariable"])
        self.assertTrue(result.had_errors)
        self.assertEqual(result.exit_status(), ExitStatus.FAILED)

    def test_parse_error_unit(self):
        error = ParseError("pre.cpp", "syntax error", line=3, column=7, offset=40)
        result = AnalysisEngine().analyze([("pre.cpp", error)])
        self.assertEqual(len(result), 1)
        self.assertEqual(result.diagnostics[0].line, 3)
        self.assertEqual(result.diagnostics[0].span.start_col, 7)

    def test_tolerant_front_end_still_checks(self):
        engine = AnalysisEngine({"tolerate_syntax_errors": True})
        result = engine.analyze_sources([("t.cpp", "int f() { return 1; int unused = 2; }\nint g( {\n")])
        self.assertNotIn(PARSE_ERROR_RULE_ID, _rules(result))

    def test_missing_file(self):
        result = AnalysisEngine().analyze_files(["/nonexistent/missing.cpp"])
        self.assertEqual(_rules(result), [PARSE_ERROR_RULE_ID])

    def test_analyze_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "scenario.cpp")
            with open(path, "w") as f:
                f.write(SCENARIO_BOOL_COMPARE)
            result = AnalysisEngine().analyze_files([path])
        self.assertEqual(_rules(result), ["BoolLiteralComparison"])

    def test_internal_error_isolated(self):
        registry = CheckRegistry()
        registry.register(_Exploding)
        registry.register(BoolLiteralComparisonCheck)
        result = AnalysisEngine(registry=registry).analyze_sources([("x.cpp", SCENARIO_BOOL_COMPARE)])

        internal = [d for d in result if d.kind is DiagnosticKind.INTERNAL_ERROR]
        self.assertEqual(len(internal), 1)
        self.assertEqual(internal[0].rule_id, "MagicNumber")
        self.assertEqual(internal[0].severity, Severity.INFO)
        self.assertIn("RuntimeError: boom", internal[0].message)
        self.assertIn("BoolLiteralComparison", _rules(result))
        self.assertEqual(result.exit_status(), ExitStatus.FAILED)

    def test_span_clamped_to_source(self):
        registry = CheckRegistry()
        registry.register(_OutOfBounds)
        result = AnalysisEngine(registry=registry).analyze_sources([("x.cpp", "int x;\n")])
        span = result.diagnostics[0].span
        self.assertEqual(span.start_offset, 5)
        self.assertEqual(span.end_offset, len("int x;\n"))
        self.assertEqual((span.start_line, span.start_col), (1, 6))
        self.assertEqual((span.end_line, span.end_col), (2, 1))

    def test_deeply_nested_file_does_not_stop_others(self):
        deep = "int f(int a) { return " + "+".join(["a"] * 3000) + "; }\n"
        engine = AnalysisEngine({"max_workers": 2})
        result = engine.analyze_sources([("deep.cpp", deep), ("ok.cpp", SCENARIO_LOOP)])
        self.assertEqual([d.rule_id for d in result.for_file("deep.cpp")], [PARSE_ERROR_RULE_ID])
        self.assertIn("nesting", result.for_file("deep.cpp")[0].message)
        self.assertEqual([d.rule_id for d in result.for_file("ok.cpp")], ["PreferPreIncrement"])
        self.assertEqual(result.exit_status(), ExitStatus.FAILED)

    def test_front_end_crash_isolated_to_its_file(self):
        engine = AnalysisEngine({"max_workers": 2}, front_end=_FlakyFrontEnd())
        result = engine.analyze_sources([("bad.cpp", "int x;\n"), ("ok.cpp", SCENARIO_LOOP)])
        bad = result.for_file("bad.cpp")
        self.assertEqual([d.kind for d in bad], [DiagnosticKind.INTERNAL_ERROR])
        self.assertIn("RuntimeError", bad[0].message)
        self.assertEqual([d.rule_id for d in result.for_file("ok.cpp")], ["PreferPreIncrement"])
        self.assertTrue(result.had_errors)

    def test_unknown_rule_rejected_before_analysis(self):
        with self.assertRaises(ConfigurationError):
            AnalysisEngine({"rules": {"NoSuchRule": {"enabled": True}}})


# ═══════════════════════════════════════════════════════════════════════
#  Configuration and suppression
# ═══════════════════════════════════════════════════════════════════════

class TestConfiguration(unittest.TestCase):

    def test_disabled_rule(self):
        engine = AnalysisEngine({"rules": {"UnusedVariable": {"enabled": False}}})
        result = engine.analyze_sources([("s.cpp", SCENARIO_UNREACHABLE)])
        self.assertEqual(_rules(result), ["UnreachableCode"])
        self.assertNotIn("UnusedVariable", engine.enabled_rules)

    def test_severity_override(self):
        engine = AnalysisEngine({"rules": {"PreferPreIncrement": {"severity": "ERROR"}}})
        result = engine.analyze_sources([("s.cpp", SCENARIO_LOOP)])
        self.assertEqual(result.diagnostics[0].severity, Severity.ERROR)
        self.assertEqual(result.exit_status(), ExitStatus.VIOLATIONS)

    def test_threshold(self):
        engine = AnalysisEngine({"rules": {"PreferPreIncrement": {"severity": "info"}}})
        result = engine.analyze_sources([("s.cpp", SCENARIO_LOOP)])
        self.assertFalse(result.has_findings(Severity.WARNING))
        self.assertTrue(result.has_findings(Severity.INFO))
        self.assertEqual(result.exit_status(), ExitStatus.CLEAN)
        self.assertEqual(result.exit_status(Severity.INFO), ExitStatus.VIOLATIONS)

    def test_clean_input(self):
        result = AnalysisEngine().analyze_sources([("ok.cpp", "int add(int a, int b) { return a + b; }\n")])
        self.assertEqual(len(result), 0)
        self.assertEqual(result.exit_status(), ExitStatus.CLEAN)

    def test_by_rule(self):
        result = AnalysisEngine().analyze_sources([("s.cpp", SCENARIO_CONSTRUCTOR)])
        self.assertEqual(list(result.by_rule()), ["PreferMemberInitList"])


class TestSuppressions(unittest.TestCase):

    def analyze(self, source: str):
        return AnalysisEngine().analyze_sources([("s.cpp", source)])

    def test_same_line_all_rules(self):
        src = "int area(int w) { return w * 42; } // idiomcheck-ignore\n"
        self.assertEqual(len(self.analyze(src)), 0)

    def test_listed_rule_only(self):
        src = "int f(bool a) { return a == true ? 42 : 0; } // idiomcheck-ignore(MagicNumber)\n"
        self.assertEqual(_rules(self.analyze(src)), ["BoolLiteralComparison"])

    def test_several_listed_rules(self):
        src = "int f(bool a) { return a == true ? 42 : 0; } // idiomcheck-ignore(MagicNumber, BoolLiteralComparison)\n"
        self.assertEqual(len(self.analyze(src)), 0)

    def test_next_line(self):
        src = """\
int area(int w) {
    int a = 0;
    // idiomcheck-ignore-next-line(MagicNumber)
    a = w * 42;
    return a * 42;
}
"""
        result = self.analyze(src)
        self.assertEqual(_rules(result), ["MagicNumber"])
        self.assertEqual(result.diagnostics[0].line, 5)

    def test_parse_errors_not_suppressed(self):
        result = self.analyze("int f( { // idiomcheck-ignore\n")
        self.assertEqual(_rules(result), [PARSE_ERROR_RULE_ID])


class TestAggregator(unittest.TestCase):

    def test_finalize_orders_and_dedups(self):
        registry = CheckRegistry()
        registry.register(BoolLiteralComparisonCheck)
        engine = AnalysisEngine(registry=registry)
        tree = CppFrontEnd().parse("z.cpp", SCENARIO_BOOL_COMPARE)
        found = engine.analyze_tree(tree)

        aggregator = DiagnosticAggregator()
        aggregator.record_source("z.cpp", tree.source_bytes)
        aggregator.extend(found)
        aggregator.extend(found)
        result = aggregator.finalize()
        self.assertEqual(len(result), 1)
        self.assertEqual(result.files, ("z.cpp",))


if __name__ == "__main__":
    unittest.main()
