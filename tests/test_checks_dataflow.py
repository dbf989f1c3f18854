"""
Semantic-Index-backed checks:
  UnusedVariable, UnreachableCode, UnsignedForNonNegative
"""

import os
import sys
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from idiomcheck.diagnostics import Severity
from idiomcheck.engine import AnalysisEngine


def findings(source: str, rule_id: str):
    result = AnalysisEngine().analyze_sources([("flow.cpp", source)])
    return [d for d in result.diagnostics if d.rule_id == rule_id]


class TestUnusedVariable(unittest.TestCase):

    def test_unread_local(self):
        src = """\
void g(int);
void f() {
    int unused = 1;
    int used = 2;
    g(used);
}
"""
        found = findings(src, "UnusedVariable")
        self.assertEqual([d.message for d in found], ["Unused variable 'unused'"])
        self.assertEqual(found[0].line, 3)

    def test_written_but_never_read(self):
        found = findings("void f() { int x = 0; x = 5; }", "UnusedVariable")
        self.assertEqual(len(found), 1)

    def test_parameters_and_globals_ignored(self):
        src = "int g_counter = 0; void f(int unused_param) { }"
        self.assertEqual(findings(src, "UnusedVariable"), [])

    def test_maybe_unused(self):
        self.assertEqual(findings("void f() { [[maybe_unused]] int x = 0; }", "UnusedVariable"), [])

    def test_range_for_variable(self):
        src = "#include <vector>\nvoid g(); void f(const std::vector<int>& v) { for (int x : v) { g(); } }"
        self.assertEqual(findings(src, "UnusedVariable"), [])

    def test_scope_guard(self):
        """An object built with constructor arguments does its work in the constructor."""
        src = """\
#include <mutex>
std::mutex m;
void f() {
    std::lock_guard<std::mutex> lock(m);
}
"""
        self.assertEqual(findings(src, "UnusedVariable"), [])

    def test_shadowed_outer_unused(self):
        src = "int f() { int a = 1; { int a = 2; return a; } }"
        found = findings(src, "UnusedVariable")
        self.assertEqual(len(found), 1)
        self.assertEqual(found[0].span.start_offset, src.index("a = 1"))


class TestUnreachableCode(unittest.TestCase):

    def test_after_return(self):
        src = """\
void g();
int f() {
    return 1;
    int x = 2;
    g();
}
"""
        found = findings(src, "UnreachableCode")
        self.assertEqual(len(found), 1)
        self.assertEqual(found[0].message, "Unreachable code after 'return' statement")
        self.assertEqual(found[0].span.start_line, 4)
        self.assertEqual(found[0].span.end_line, 5)
        self.assertEqual(found[0].related[0].start_line, 3)

    def test_after_infinite_loop(self):
        src = "void g(); void f() { while (true) { g(); } g(); }"
        found = findings(src, "UnreachableCode")
        self.assertEqual([d.message for d in found], ["Unreachable code"])

    def test_nested_block_reported_once(self):
        src = "void g(); int f(int a) { if (a) { return 1; g(); g(); } return 0; }"
        self.assertEqual(len(findings(src, "UnreachableCode")), 1)

    def test_dead_branch_reported_at_topmost_statement(self):
        src = "void g(); void f() { return; if (true) { g(); } }"
        found = findings(src, "UnreachableCode")
        self.assertEqual(len(found), 1)
        self.assertEqual(found[0].span.start_offset, src.index("if (true)"))

    def test_reachable_code(self):
        src = "int f(int a) { if (a) { return 1; } return 0; }"
        self.assertEqual(findings(src, "UnreachableCode"), [])

    def test_each_function_separately(self):
        src = "int f() { return 1; f(); }\nint g() { throw 2; g(); }"
        found = findings(src, "UnreachableCode")
        self.assertEqual([d.line for d in found], [1, 2])
        self.assertIn("'throw'", found[1].message)


class TestUnsignedForNonNegative(unittest.TestCase):

    def test_loop_index(self):
        src = """\
#include <cstddef>
int sum(const int* a, size_t n) {
    int total = 0;
    for (int i = 0; i < n; ++i) {
        total += a[i];
    }
    return total;
}
"""
        found = findings(src, "UnsignedForNonNegative")
        self.assertEqual(len(found), 1)
        self.assertEqual(found[0].line, 4)
        self.assertEqual(found[0].severity, Severity.INFO)
        self.assertIn("'i'", found[0].message)

    def test_compared_with_container_size(self):
        src = """\
#include <vector>
void g(int);
void f(const std::vector<int>& v) {
    for (int i = 0; i < v.size(); i++) {
        g(0);
    }
}
"""
        self.assertEqual(len(findings(src, "UnsignedForNonNegative")), 1)

    def test_counting_down(self):
        src = "int f(const int* a, int n) { int s = 0; for (int i = n; i >= 0; --i) s += a[i]; return s; }"
        self.assertEqual(findings(src, "UnsignedForNonNegative"), [])

    def test_negative_initialiser(self):
        src = "int f(const int* a) { int i = -1; ++i; return a[i]; }"
        self.assertEqual(findings(src, "UnsignedForNonNegative"), [])

    def test_no_index_or_size_use(self):
        src = "int f() { int count = 0; ++count; return count; }"
        self.assertEqual(findings(src, "UnsignedForNonNegative"), [])

    def test_escaping_by_reference(self):
        src = "void bump(int&); int f(const int* a) { int i = 0; bump(i); return a[i]; }"
        self.assertEqual(findings(src, "UnsignedForNonNegative"), [])

    def test_compared_with_signed_value(self):
        src = "int f(const int* a, int k) { int s = 0; for (int i = 0; i < k; ++i) s += a[i]; return s; }"
        self.assertEqual(findings(src, "UnsignedForNonNegative"), [])

    def test_compared_with_undeclared_name(self):
        src = "int f(const int* a) { int s = 0; for (int i = 0; i < limit; ++i) s += a[i]; return s; }"
        self.assertEqual(findings(src, "UnsignedForNonNegative"), [])

    def test_initialised_from_unknown_call(self):
        src = "int f(const int* a) { int i = first_index(a); return a[i]; }"
        self.assertEqual(findings(src, "UnsignedForNonNegative"), [])

    def test_passed_by_value_still_reported(self):
        src = "void log(int); int f(const int* a) { int i = 0; log(i); ++i; return a[i]; }"
        self.assertEqual(len(findings(src, "UnsignedForNonNegative")), 1)

    def test_already_unsigned(self):
        src = "int f(const int* a, size_t n) { int s = 0; for (size_t i = 0; i < n; ++i) s += a[i]; return s; }"
        self.assertEqual(findings(src, "UnsignedForNonNegative"), [])


if __name__ == "__main__":
    unittest.main()
