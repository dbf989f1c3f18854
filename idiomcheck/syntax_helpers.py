"""
Small predicates over the Syntax Model shared by the checks.
"""

import re
from typing import List, Optional, Tuple

from idiomcheck.syntax_model import NodeCategory, NodeKind, SyntaxNode

_LEAF_KINDS = {NodeKind.IDENTIFIER, NodeKind.LITERAL, NodeKind.THIS, NodeKind.TYPE}

_EXIT_KINDS = {NodeKind.RETURN, NodeKind.THROW, NodeKind.BREAK, NodeKind.CONTINUE, NodeKind.GOTO}

_SIDE_EFFECT_KINDS = {
    NodeKind.ASSIGNMENT, NodeKind.CALL, NodeKind.NEW, NodeKind.DELETE, NodeKind.UNKNOWN_EXPR,
    NodeKind.LAMBDA,
}


def strip_parens(node: Optional[SyntaxNode]) -> Optional[SyntaxNode]:
    """Drop any number of enclosing parentheses."""
    while node is not None and node.kind is NodeKind.PARENTHESIZED:
        node = node.child("operand")
    return node


def bool_literal_value(node: Optional[SyntaxNode]) -> Optional[bool]:
    node = strip_parens(node)
    if node is None or node.kind is not NodeKind.LITERAL or node.literal_kind != "bool":
        return None
    return node.value == "true"


def is_bool_literal(node: Optional[SyntaxNode]) -> bool:
    return bool_literal_value(node) is not None


def literal_number(node: Optional[SyntaxNode]) -> Optional[float]:
    """Numeric value of an integer/floating literal (``0x1F``, ``10'000u``, ``1.5f``)."""
    node = strip_parens(node)
    if node is None:
        return None
    negate = False
    if node.kind is NodeKind.UNARY_OP and node.operator in ("-", "+"):
        negate = node.operator == "-"
        node = strip_parens(node.child("operand"))
    if node is None or node.kind is not NodeKind.LITERAL or node.literal_kind != "number":
        return None
    text = node.value.replace("'", "").lower()
    try:
        if text.startswith("0x") and "." not in text and "p" not in text:
            value = float(int(re.sub(r"[ul]+$", "", text[2:]) or "0", 16))
        elif text.startswith("0b"):
            value = float(int(re.sub(r"[ul]+$", "", text[2:]) or "0", 2))
        elif re.fullmatch(r"0[0-7]+[ul]*", text):
            value = float(int(re.sub(r"[ul]+$", "", text), 8))
        else:
            value = float(re.sub(r"(?<=[0-9.])[flu]+$", "", text))
    except ValueError:
        return None
    return -value if negate else value


def statements_of(stmt: Optional[SyntaxNode]) -> List[SyntaxNode]:
    """A compound statement's children, or the statement itself."""
    if stmt is None:
        return []
    if stmt.kind is NodeKind.COMPOUND:
        return list(stmt.children)
    return [stmt]


def significant_statements(stmt: Optional[SyntaxNode]) -> List[SyntaxNode]:
    return [s for s in statements_of(stmt) if s.kind is not NodeKind.EMPTY]


def single_statement(stmt: Optional[SyntaxNode]) -> Optional[SyntaxNode]:
    """The only statement of a (possibly braced) branch, unwrapping nested blocks."""
    while stmt is not None and stmt.kind is NodeKind.COMPOUND:
        inner = significant_statements(stmt)
        if len(inner) != 1:
            return None
        stmt = inner[0]
    return stmt


def always_exits(stmt: Optional[SyntaxNode]) -> bool:
    """True when control can never fall out of the end of ``stmt``."""
    if stmt is None:
        return False
    k = stmt.kind
    if k in _EXIT_KINDS:
        return True
    if k is NodeKind.COMPOUND:
        return any(always_exits(s) for s in stmt.children)
    if k is NodeKind.IF:
        other = stmt.child("else")
        return other is not None and always_exits(stmt.child("then")) and always_exits(other)
    if k is NodeKind.LABEL:
        return always_exits(stmt.child("body"))
    if k is NodeKind.TRY:
        handlers = stmt.children_with("handler")
        return always_exits(stmt.child("body")) and all(
            always_exits(h.child("body")) for h in handlers)
    return False


def enclosing_statement(node: SyntaxNode) -> Optional[SyntaxNode]:
    if node.category is NodeCategory.STATEMENT:
        return node
    for ancestor in node.ancestors():
        if ancestor.category is NodeCategory.STATEMENT:
            return ancestor
    return None


def enclosing_function(node: SyntaxNode) -> Optional[SyntaxNode]:
    return node.enclosing(NodeKind.FUNCTION)


def identifiers_in(node: Optional[SyntaxNode]) -> List[SyntaxNode]:
    if node is None:
        return []
    return [n for n in node.walk() if n.kind is NodeKind.IDENTIFIER]


def has_side_effects(node: Optional[SyntaxNode]) -> bool:
    """Conservative: calls, assignments, ``++``/``--`` and anything unknown count."""
    if node is None:
        return False
    for n in node.walk():
        if n.kind in _SIDE_EFFECT_KINDS:
            return True
        if n.kind in (NodeKind.UNARY_OP, NodeKind.POSTFIX_OP) and n.operator in ("++", "--"):
            return True
    return False


def is_value_discarded(expr: SyntaxNode) -> bool:
    """True when the value of ``expr`` is thrown away by its context."""
    parent = expr.parent
    role = expr.role
    if parent is None:
        return False
    if parent.kind is NodeKind.EXPRESSION_STMT:
        return True
    if parent.kind is NodeKind.FOR and role == "update":
        return True
    if parent.kind is NodeKind.COMMA:
        return role == "left" or is_value_discarded(parent)
    if parent.kind is NodeKind.PARENTHESIZED:
        return is_value_discarded(parent)
    if parent.kind is NodeKind.CAST and parent.type_text == "void":
        return True
    return False


# ── structural comparison ──

def _signature(node: SyntaxNode) -> Tuple:
    return (node.kind, node.name, node.operator, node.value, node.literal_kind,
            node.type_text, tuple(sorted(node.qualifiers)))


def structural_diff(a: SyntaxNode, b: SyntaxNode, max_depth: Optional[int] = None,
                    _depth: int = 0) -> Optional[int]:
    """Count differing leaves between two subtrees of the same shape.

    Leaves are identifiers, literals, ``this`` and type references; two
    subtrees whose shapes differ anywhere else compare as ``None``.  Below
    ``max_depth`` subtrees must match exactly.
    """
    a_leaf = a.kind in _LEAF_KINDS
    b_leaf = b.kind in _LEAF_KINDS
    if a_leaf or b_leaf:
        if a_leaf and b_leaf:
            return 0 if _signature(a) == _signature(b) else 1
        return None
    if _signature(a) != _signature(b) or a.roles != b.roles:
        return None
    if max_depth is not None and _depth >= max_depth:
        return 0 if structurally_equal(a, b) else None
    total = 0
    for child_a, child_b in zip(a.children, b.children):
        diff = structural_diff(child_a, child_b, max_depth, _depth + 1)
        if diff is None:
            return None
        total += diff
    return total


def structurally_equal(a: Optional[SyntaxNode], b: Optional[SyntaxNode]) -> bool:
    """Same shape and same leaves, ignoring source positions."""
    if a is None or b is None:
        return a is b
    if _signature(a) != _signature(b) or a.roles != b.roles:
        return False
    return all(structurally_equal(x, y) for x, y in zip(a.children, b.children))
