"""
Front-end tests: tree-sitter C++ source → Syntax Model.

Covers:
  1. Declarations (functions, classes, fields, qualifiers, out-of-line owners)
  2. Statement roles (if / for / range-for / switch)
  3. Expression lowering (operators, casts, member access)
  4. Failure modes (syntax errors, binary input, missing files)
"""

import os
import sys
import tempfile
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from idiomcheck.cpp_frontend import CppFrontEnd, normalize_operator_name, normalize_type
from idiomcheck.errors import ParseError
from idiomcheck.syntax_model import NodeCategory, NodeKind


CLASS_SOURCE = """\
// a point
class Point {
public:
    Point(int x, int y) : x_(x) { y_ = y; }
    ~Point() {}
    int x() const { return x_; }
    bool operator==(const Point& o) const { return x_ == o.x_; }
    static int count;
private:
    int x_;
    int y_ = 0;
};

void Point::reset() { x_ = 0; }
"""


def _first(tree, kind, name=None):
    for node in tree.walk():
        if node.kind is kind and (name is None or node.name == name):
            return node
    raise AssertionError(f"no {kind.value} named {name!r}")


class TestDeclarations(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.tree = CppFrontEnd().parse("point.cpp", CLASS_SOURCE)

    def test_class_members(self):
        """The class node carries its fields and methods as members."""
        cls_node = _first(self.tree, NodeKind.CLASS, "Point")
        self.assertTrue(cls_node.has("class"))
        names = {m.name for m in cls_node.children_with("member")}
        for expected in ("Point", "~Point", "x", "operator==", "count", "x_", "y_"):
            self.assertIn(expected, names)

    def test_constructor_and_member_init(self):
        ctor = _first(self.tree, NodeKind.FUNCTION, "Point")
        self.assertTrue(ctor.has("constructor"))
        inits = ctor.children_with("member_init")
        self.assertEqual([i.name for i in inits], ["x_"])
        self.assertEqual(len(ctor.children_with("parameter")), 2)

    def test_destructor(self):
        dtor = _first(self.tree, NodeKind.FUNCTION, "~Point")
        self.assertTrue(dtor.has("destructor"))

    def test_const_method(self):
        method = _first(self.tree, NodeKind.FUNCTION, "x")
        self.assertTrue(method.has("const"))
        self.assertEqual(method.type_text, "int")

    def test_operator_name_normalised(self):
        op = _first(self.tree, NodeKind.FUNCTION, "operator==")
        self.assertTrue(op.has("const"))
        param = op.children_with("parameter")[0]
        self.assertEqual(param.type_text, "const Point&")
        self.assertTrue(param.has("reference"))

    def test_field_default_initializer(self):
        field = _first(self.tree, NodeKind.FIELD, "y_")
        self.assertIsNotNone(field.child("initializer"))

    def test_static_field(self):
        field = _first(self.tree, NodeKind.FIELD, "count")
        self.assertTrue(field.has("static"))

    def test_out_of_line_owner(self):
        fn = _first(self.tree, NodeKind.FUNCTION, "reset")
        self.assertEqual(fn.owner, "Point")

    def test_comments_collected(self):
        self.assertEqual(len(self.tree.comments), 1)
        self.assertEqual(self.tree.comments[0].text, "// a point")
        self.assertEqual(self.tree.comments[0].span.start_line, 1)

    def test_functions_have_bodies(self):
        names = [f.name for f in self.tree.functions()]
        self.assertIn("reset", names)
        self.assertNotIn("count", names)

    def test_spans_map_to_source(self):
        fn = _first(self.tree, NodeKind.FUNCTION, "reset")
        self.assertTrue(self.tree.text_of(fn).startswith("void Point::reset()"))
        self.assertEqual(fn.span.start_line, 14)
        self.assertEqual(fn.span.start_col, 1)

    def test_parent_links(self):
        field = _first(self.tree, NodeKind.FIELD, "x_")
        self.assertIs(field.parent.kind, NodeKind.CLASS)
        self.assertEqual(field.role, "member")
        self.assertIs(field.category, NodeCategory.DECLARATION)


class TestStatements(unittest.TestCase):

    def setUp(self):
        self.front_end = CppFrontEnd()

    def test_if_roles(self):
        tree = self.front_end.parse("t.cpp", "int f(int a) { if (a > 0) return 1; else return 2; }")
        node = _first(tree, NodeKind.IF)
        self.assertIs(node.child("condition").kind, NodeKind.BINARY_OP)
        self.assertIs(node.child("then").kind, NodeKind.RETURN)
        self.assertIs(node.child("else").kind, NodeKind.RETURN)

    def test_for_roles(self):
        tree = self.front_end.parse("t.cpp", "void f() { for (int i = 0; i < 3; ++i) { } }")
        loop = _first(tree, NodeKind.FOR)
        self.assertIs(loop.child("init").kind, NodeKind.DECLARATION_STMT)
        self.assertEqual(loop.child("condition").operator, "<")
        self.assertIs(loop.child("update").kind, NodeKind.UNARY_OP)
        self.assertIs(loop.child("body").kind, NodeKind.COMPOUND)

    def test_range_for(self):
        tree = self.front_end.parse("t.cpp", "void f(int* v) { for (int x : v) { } }")
        loop = _first(tree, NodeKind.RANGE_FOR)
        self.assertEqual(loop.child("declarator").name, "x")
        self.assertIs(loop.child("range").kind, NodeKind.IDENTIFIER)

    def test_switch_cases(self):
        src = "void f(int a) { switch (a) { case 1: break; default: break; } }"
        tree = self.front_end.parse("t.cpp", src)
        cases = list(tree.nodes_of_kind(NodeKind.CASE))
        self.assertEqual(len(cases), 2)
        self.assertFalse(cases[0].has("default"))
        self.assertTrue(cases[1].has("default"))
        self.assertIs(cases[0].children_with("body")[0].kind, NodeKind.BREAK)

    def test_empty_statement(self):
        tree = self.front_end.parse("t.cpp", "void f() { ; }")
        self.assertEqual(len(list(tree.nodes_of_kind(NodeKind.EMPTY))), 1)


class TestExpressions(unittest.TestCase):

    def setUp(self):
        self.front_end = CppFrontEnd()

    def test_postfix_and_prefix(self):
        tree = self.front_end.parse("t.cpp", "void f(int i) { i++; ++i; }")
        postfix = _first(tree, NodeKind.POSTFIX_OP)
        self.assertEqual(postfix.operator, "++")
        prefix = _first(tree, NodeKind.UNARY_OP)
        self.assertTrue(prefix.has("prefix"))

    def test_named_cast(self):
        tree = self.front_end.parse("t.cpp", "int f(double d) { return static_cast<int>(d); }")
        cast = _first(tree, NodeKind.CAST)
        self.assertEqual(cast.name, "static_cast")
        self.assertEqual(cast.type_text, "int")

    def test_member_access(self):
        tree = self.front_end.parse("t.cpp", "struct S { int m; }; int f(S* p) { return p->m; }")
        access = _first(tree, NodeKind.MEMBER_ACCESS)
        self.assertEqual(access.name, "m")
        self.assertEqual(access.operator, "->")
        self.assertEqual(access.child("object").name, "p")

    def test_literals(self):
        tree = self.front_end.parse("t.cpp", 'void f() { g(42, "s", true, nullptr); }')
        kinds = [n.literal_kind for n in tree.nodes_of_kind(NodeKind.LITERAL)]
        self.assertEqual(kinds, ["number", "string", "bool", "null"])

    def test_call_name(self):
        tree = self.front_end.parse("t.cpp", "void f() { g(1); }")
        call = _first(tree, NodeKind.CALL)
        self.assertEqual(call.name, "g")
        self.assertEqual(len(call.children_with("argument")), 1)

    def test_member_operator_call(self):
        tree = self.front_end.parse("t.cpp", "struct V { V operator+(V) const; }; V f(V a, V b) { return a.operator+(b); }")
        call = _first(tree, NodeKind.CALL)
        callee = call.child("callee")
        self.assertIs(callee.kind, NodeKind.MEMBER_ACCESS)
        self.assertEqual(callee.name, "operator+")
        self.assertEqual(callee.operator, ".")
        self.assertEqual(callee.child("object").name, "a")
        self.assertEqual([a.name for a in call.children_with("argument")], ["b"])

    def test_free_operator_call(self):
        tree = self.front_end.parse("t.cpp", "struct V {}; bool operator==(V, V); bool f(V a, V b) { return operator==(a, b); }")
        call = _first(tree, NodeKind.CALL)
        self.assertEqual(call.name, "operator==")
        self.assertIs(call.child("callee").kind, NodeKind.IDENTIFIER)
        self.assertEqual([a.name for a in call.children_with("argument")], ["a", "b"])
        self.assertIsNone(_first(tree, NodeKind.BINARY_OP))


class TestFailures(unittest.TestCase):

    def test_syntax_error_raises(self):
        with self.assertRaises(ParseError) as cm:
            CppFrontEnd().parse("bad.cpp", "int f() {\n  int x = ;\n}\n")
        self.assertEqual(cm.exception.file_id, "bad.cpp")
        self.assertTrue(cm.exception.message.startswith("syntax error"))
        self.assertGreaterEqual(cm.exception.line, 1)

    def test_tolerant_mode_keeps_tree(self):
        tree = CppFrontEnd(tolerate_syntax_errors=True).parse("bad.cpp", "int f() {\n  int x = ;\n}\n")
        self.assertEqual(tree.file_id, "bad.cpp")

    def test_excessive_nesting_raises(self):
        deep = "int f(int a) { return " + "+".join(["a"] * 3000) + "; }\n"
        with self.assertRaises(ParseError) as cm:
            CppFrontEnd().parse("deep.cpp", deep)
        self.assertEqual(cm.exception.message, "nesting too deep to analyse")

    def test_binary_input(self):
        with self.assertRaises(ParseError) as cm:
            CppFrontEnd().parse("blob.cpp", b"\x7fELF\x00\x00\x01")
        self.assertEqual(cm.exception.message, "binary file")

    def test_missing_file(self):
        with self.assertRaises(ParseError):
            CppFrontEnd().parse_file("/nonexistent/really/missing.cpp")

    def test_parse_file(self):
        with tempfile.NamedTemporaryFile("w", suffix=".cpp", delete=False) as f:
            f.write("int main() { return 0; }\n")
            path = f.name
        try:
            tree = CppFrontEnd().parse_file(path)
            self.assertEqual([fn.name for fn in tree.functions()], ["main"])
        finally:
            os.unlink(path)


class TestNormalisation(unittest.TestCase):

    def test_normalize_type(self):
        self.assertEqual(normalize_type("const  T &"), "const T&")
        self.assertEqual(normalize_type("std :: vector < int >"), "std::vector<int>")

    def test_normalize_operator_name(self):
        self.assertEqual(normalize_operator_name("operator =="), "operator==")
        self.assertEqual(normalize_operator_name("operator  new"), "operator new")


if __name__ == "__main__":
    unittest.main()
