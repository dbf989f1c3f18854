"""
CFG tests: structured lowering and reachability.
"""

import os
import sys
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from idiomcheck.control_flow import ControlFlowGraph, EdgeKind, build_cfg, is_constant_true
from idiomcheck.cpp_frontend import CppFrontEnd
from idiomcheck.syntax_model import NodeKind


def _cfg(source: str):
    tree = CppFrontEnd().parse("t.cpp", source)
    fn = tree.functions()[0]
    return tree, build_cfg(fn)


def _stmt(tree, text: str):
    for node in tree.walk():
        if node.category.value == "statement" and tree.text_of(node) == text:
            return node
    raise AssertionError(f"statement {text!r} not found")


def _unreachable_texts(tree, cfg: ControlFlowGraph):
    return [tree.text_of(s) for s in cfg.unreachable_statements()]


class TestReachability(unittest.TestCase):

    def test_entry_and_exit(self):
        _, cfg = _cfg("void f() { }")
        self.assertEqual(cfg.entry.id, ControlFlowGraph.ENTRY)
        self.assertEqual(cfg.exit.id, ControlFlowGraph.EXIT)
        self.assertTrue(cfg.exit.reachable)

    def test_statement_after_return(self):
        tree, cfg = _cfg("int f() { return 1; int unused = 2; }")
        self.assertFalse(cfg.is_reachable(_stmt(tree, "int unused = 2;")))
        self.assertTrue(cfg.is_reachable(_stmt(tree, "return 1;")))

    def test_both_branches_return(self):
        tree, cfg = _cfg("int f(int a) { if (a) { return 1; } else { return 2; } a = 3; }")
        self.assertIn("a = 3;", _unreachable_texts(tree, cfg))

    def test_one_branch_returns(self):
        tree, cfg = _cfg("int f(int a) { if (a) { return 1; } a = 3; return a; }")
        self.assertTrue(cfg.is_reachable(_stmt(tree, "a = 3;")))

    def test_infinite_while_without_break(self):
        tree, cfg = _cfg("void g(); void f() { while (true) { g(); } g(); }")
        after = [s for s in tree.nodes_of_kind(NodeKind.EXPRESSION_STMT)][-1]
        self.assertFalse(cfg.is_reachable(after))

    def test_infinite_while_with_break(self):
        tree, cfg = _cfg("void g(); void f(int a) { while (true) { if (a) break; } g(); }")
        self.assertTrue(cfg.is_reachable(_stmt(tree, "g();")))

    def test_for_ever_has_no_false_edge(self):
        _, cfg = _cfg("void f() { for (;;) { } }")
        loop_cond = next(b for b in cfg.blocks if b.label == "loop_cond")
        kinds = {e.kind for e in loop_cond.successors}
        self.assertIn(EdgeKind.TRUE_BRANCH, kinds)
        self.assertNotIn(EdgeKind.FALSE_BRANCH, kinds)
        self.assertFalse(cfg.exit.reachable)

    def test_ordinary_loop_has_false_edge(self):
        _, cfg = _cfg("void f(int n) { while (n) { n--; } }")
        loop_cond = next(b for b in cfg.blocks if b.label == "loop_cond")
        self.assertIn(EdgeKind.FALSE_BRANCH, {e.kind for e in loop_cond.successors})
        self.assertIn(EdgeKind.LOOP_BACK, {e.kind for e in cfg.edges()})

    def test_code_after_continue(self):
        tree, cfg = _cfg("void g(); void f(int n) { while (n) { continue; g(); } }")
        self.assertEqual(_unreachable_texts(tree, cfg), ["g();"])

    def test_goto_skips_code(self):
        src = "void g(); void f() { goto done; g(); done: return; }"
        tree, cfg = _cfg(src)
        self.assertEqual(_unreachable_texts(tree, cfg), ["g();"])
        label = next(tree.nodes_of_kind(NodeKind.LABEL))
        self.assertTrue(cfg.is_reachable(label))

    def test_switch_fallthrough_edges(self):
        src = "void g(); void f(int a) { switch (a) { case 1: g(); case 2: g(); break; } }"
        _, cfg = _cfg(src)
        kinds = [e.kind for e in cfg.edges()]
        self.assertIn(EdgeKind.FALLTHROUGH, kinds)
        self.assertEqual(kinds.count(EdgeKind.TRUE_BRANCH), 2)

    def test_code_after_break_in_case(self):
        src = "void g(); void h(); void f(int a) { switch (a) { case 1: g(); break; h(); default: break; } }"
        tree, cfg = _cfg(src)
        self.assertEqual(_unreachable_texts(tree, cfg), ["h();"])

    def test_catch_handler_reachable(self):
        src = "void g(); void h(); void f() { try { g(); } catch (...) { h(); } }"
        tree, cfg = _cfg(src)
        self.assertTrue(cfg.is_reachable(_stmt(tree, "h();")))
        self.assertEqual(cfg.unreachable_statements(), [])

    def test_throw_terminates(self):
        tree, cfg = _cfg("void g(); void f() { throw 1; g(); }")
        self.assertEqual(_unreachable_texts(tree, cfg), ["g();"])


class TestConstantConditions(unittest.TestCase):

    def test_constant_true(self):
        tree = CppFrontEnd().parse("t.cpp", "void f(int a) { while (true) {} while (1) {} while (a) {} while (0) {} }")
        conditions = [w.child("condition") for w in tree.nodes_of_kind(NodeKind.WHILE)]
        self.assertEqual([is_constant_true(c) for c in conditions], [True, True, False, False])

    def test_missing_condition(self):
        self.assertTrue(is_constant_true(None))


if __name__ == "__main__":
    unittest.main()
