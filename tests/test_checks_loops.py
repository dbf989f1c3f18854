"""
Loop idiom checks:
  PreferPreIncrement, RedundantLoopCondition, PreferForLoop, HoistableLoopCondition
"""

import os
import sys
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from idiomcheck.engine import AnalysisEngine


def findings(source: str, rule_id: str):
    engine = AnalysisEngine({"rules": {rule_id: {"enabled": True}}})
    result = engine.analyze_sources([("loops.cpp", source)])
    return [d for d in result.diagnostics if d.rule_id == rule_id]


class TestPreferPreIncrement(unittest.TestCase):

    def test_for_update_clause(self):
        """The scenario loop: only the i++ in the update clause is reported."""
        src = "int f() { int sum = 0; for (size_t i = 0; i < 5; i++) { sum += i; } return sum; }"
        found = findings(src, "PreferPreIncrement")
        self.assertEqual(len(found), 1)
        self.assertEqual(found[0].suggested_fix, "++i")
        self.assertEqual(src[found[0].span.start_offset:found[0].span.end_offset], "i++")

    def test_expression_statement(self):
        found = findings("void f(int n) { n--; }", "PreferPreIncrement")
        self.assertEqual([d.suggested_fix for d in found], ["--n"])

    def test_plus_equals_one(self):
        found = findings("void f(int n) { n += 1; n -= 1; n += 2; }", "PreferPreIncrement")
        self.assertEqual([d.suggested_fix for d in found], ["++n", "--n"])

    def test_value_used_not_reported(self):
        src = "int f(int* a, int i) { int x = i++; a[i++] = 0; return x; }"
        self.assertEqual(findings(src, "PreferPreIncrement"), [])

    def test_prefix_not_reported(self):
        self.assertEqual(findings("void f(int n) { ++n; }", "PreferPreIncrement"), [])

    def test_discarded_comma_operand(self):
        src = "void f(int n) { for (int i = 0, j = 0; i < n; i++, j++) { } }"
        self.assertEqual(len(findings(src, "PreferPreIncrement")), 2)


class TestRedundantLoopCondition(unittest.TestCase):

    def test_repeated_condition(self):
        src = """\
void g(int);
void f(int n) {
    for (int i = 0; i < n; ++i) {
        if (i < n) {
            g(i);
        }
    }
}
"""
        found = findings(src, "RedundantLoopCondition")
        self.assertEqual(len(found), 1)
        self.assertIn("redundant with loop condition", found[0].message.lower())
        self.assertEqual(found[0].line, 4)

    def test_repeated_conjunct(self):
        src = """\
void g(int);
void f(int n, bool ok) {
    for (int i = 0; i < n; ++i) {
        if (ok && i < n) g(i);
    }
}
"""
        self.assertEqual(len(findings(src, "RedundantLoopCondition")), 1)

    def test_variable_written_in_body(self):
        src = """\
void g(int);
void f(int n) {
    for (int i = 0; i < n; ++i) {
        n = n - 1;
        if (i < n) g(i);
    }
}
"""
        self.assertEqual(findings(src, "RedundantLoopCondition"), [])

    def test_different_condition(self):
        src = "void g(int); void f(int n) { for (int i = 0; i < n; ++i) { if (i < 3) g(i); } }"
        self.assertEqual(findings(src, "RedundantLoopCondition"), [])

    def test_counter_passed_by_reference(self):
        src = "void g(int&); void f(int n) { for (int i = 0; i < n; ++i) { if (i < n) g(i); } }"
        self.assertEqual(findings(src, "RedundantLoopCondition"), [])

    def test_counter_passed_to_unknown_function(self):
        src = "void f(int n) { for (int i = 0; i < n; ++i) { if (i < n) mystery(i); } }"
        self.assertEqual(findings(src, "RedundantLoopCondition"), [])


class TestPreferForLoop(unittest.TestCase):

    def test_counter_loop(self):
        src = """\
void g(int);
void f(int n) {
    int i = 0;
    while (i < n) {
        g(i);
        ++i;
    }
}
"""
        found = findings(src, "PreferForLoop")
        self.assertEqual(len(found), 1)
        self.assertEqual(found[0].line, 4)
        self.assertEqual(found[0].suggested_fix, "for (int i = 0; i < n; ++i)")

    def test_counter_used_after_loop(self):
        src = """\
int f(int n) {
    int i = 0;
    while (i < n) {
        ++i;
    }
    return i;
}
"""
        self.assertEqual(findings(src, "PreferForLoop"), [])

    def test_declaration_not_adjacent(self):
        src = """\
void g(int);
void f(int n) {
    int i = 0;
    g(n);
    while (i < n) {
        ++i;
    }
}
"""
        self.assertEqual(findings(src, "PreferForLoop"), [])

    def test_counter_not_updated(self):
        src = "bool ready(); void f() { int tries = 0; while (tries < 3) { ready(); } }"
        self.assertEqual(findings(src, "PreferForLoop"), [])


class TestHoistableLoopCondition(unittest.TestCase):

    def test_invariant_condition(self):
        src = """\
void g(int);
void f(int n, bool verbose) {
    for (int i = 0; i < n; ++i) {
        if (verbose) {
            g(i);
        }
    }
}
"""
        found = findings(src, "HoistableLoopCondition")
        self.assertEqual(len(found), 1)
        self.assertEqual(found[0].line, 4)

    def test_hoisted_loop_is_clean(self):
        src ="void g(int); void f(int n, bool verbose) { for (int i = 0; i < n; ++i) { if (verbose) g(i); } }"
        found = findings(src, "HoistableLoopCondition")
        self.assertEqual(len(found), 1)
        fix = found[0].suggested_fix
        self.assertEqual(fix, "if (verbose) for (int i = 0; i < n; ++i) { g(i); }")

        loop_start = src.index("for (")
        loop_end = src.rindex("}", 0, len(src) - 1) + 1
        fixed = src[:loop_start] + fix + src[loop_end:]
        result = AnalysisEngine().analyze_sources([("hoisted.cpp", fixed)])
        self.assertFalse(result.had_errors)
        self.assertNotIn("HoistableLoopCondition", [d.rule_id for d in result.diagnostics])

    def test_argument_passed_by_reference_blocks(self):
        src = "void g(bool&); void f(int n, bool flag) { for (int i = 0; i < n; ++i) { if (flag) g(flag); } }"
        self.assertEqual(findings(src, "HoistableLoopCondition"), [])

    def test_argument_passed_by_value(self):
        src = "void g(bool); void f(int n, bool flag) { for (int i = 0; i < n; ++i) { if (flag) g(flag); } }"
        found = findings(src, "HoistableLoopCondition")
        self.assertEqual([d.suggested_fix for d in found],
                         ["if (flag) for (int i = 0; i < n; ++i) { g(flag); }"])

    def test_condition_written_in_loop(self):
        src = """\
void g(int);
void f(int n, bool verbose) {
    for (int i = 0; i < n; ++i) {
        if (verbose) {
            verbose = false;
        }
    }
}
"""
        self.assertEqual(findings(src, "HoistableLoopCondition"), [])

    def test_condition_depends_on_counter(self):
        src = "void g(int); void f(int n) { for (int i = 0; i < n; ++i) { if (i > 2) g(i); } }"
        self.assertEqual(findings(src, "HoistableLoopCondition"), [])

    def test_condition_with_call(self):
        src = "bool ready(); void g(); void f(int n) { while (n) { if (ready()) g(); } }"
        self.assertEqual(findings(src, "HoistableLoopCondition"), [])

    def test_else_branch_not_reported(self):
        src = "void g(); void h(); void f(int n, bool v) { while (n) { if (v) g(); else h(); } }"
        self.assertEqual(findings(src, "HoistableLoopCondition"), [])


if __name__ == "__main__":
    unittest.main()
