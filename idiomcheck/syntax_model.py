"""
Syntax Model: the immutable C++ tree the whole checker runs on.

A ``SyntaxTree`` is produced once per translation unit by a front end
(see ``cpp_frontend``) and is never mutated afterwards:

  • SourceSpan  : file + start/end offset, line and column
  • SyntaxNode  : tagged node (NodeKind → NodeCategory) with role-labelled
                  children and weak parent back-references
  • SyntaxTree  : root node, raw source bytes and collected comments

Lines and columns are 1-indexed, offsets are 0-indexed byte offsets and
``end_offset`` is exclusive.
"""

import weakref
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict


# ═══════════════════════════════════════════════════════════════════════
#  Source spans
# ═══════════════════════════════════════════════════════════════════════

class SourceSpan(BaseModel):
    """A half-open byte range in one file, with line/column for humans."""
    model_config = ConfigDict(frozen=True)

    file: str
    start_offset: int
    start_line: int
    start_col: int
    end_offset: int
    end_line: int
    end_col: int

    def cover(self, other: "SourceSpan") -> "SourceSpan":
        """Smallest span containing both ``self`` and ``other``."""
        if other.file != self.file:
            raise ValueError(f"Cannot cover spans of different files: {self.file} / {other.file}")
        first = self if self.start_offset <= other.start_offset else other
        last = self if self.end_offset >= other.end_offset else other
        return SourceSpan(
            file=self.file,
            start_offset=first.start_offset, start_line=first.start_line, start_col=first.start_col,
            end_offset=last.end_offset, end_line=last.end_line, end_col=last.end_col,
        )

    def contains(self, other: "SourceSpan") -> bool:
        return (self.file == other.file and
                self.start_offset <= other.start_offset and
                other.end_offset <= self.end_offset)

    def __str__(self) -> str:
        return f"{self.file}:{self.start_line}:{self.start_col}"


# ═══════════════════════════════════════════════════════════════════════
#  Node tags
# ═══════════════════════════════════════════════════════════════════════

class NodeCategory(str, Enum):
    DECLARATION = "declaration"
    STATEMENT = "statement"
    EXPRESSION = "expression"
    TYPE_REFERENCE = "type_reference"


class NodeKind(str, Enum):
    # Declarations
    TRANSLATION_UNIT = "translation_unit"
    NAMESPACE = "namespace"
    CLASS = "class"
    FIELD = "field"
    FUNCTION = "function"
    PARAMETER = "parameter"
    VARIABLE = "variable"
    TYPE_ALIAS = "type_alias"
    ENUM = "enum"

    # Statements
    COMPOUND = "compound"
    DECLARATION_STMT = "declaration_stmt"
    EXPRESSION_STMT = "expression_stmt"
    IF = "if"
    FOR = "for"
    RANGE_FOR = "range_for"
    WHILE = "while"
    DO_WHILE = "do_while"
    SWITCH = "switch"
    CASE = "case"
    RETURN = "return"
    BREAK = "break"
    CONTINUE = "continue"
    THROW = "throw"
    GOTO = "goto"
    LABEL = "label"
    TRY = "try"
    CATCH = "catch"
    EMPTY = "empty"
    UNKNOWN_STMT = "unknown_stmt"

    # Expressions
    BINARY_OP = "binary_op"
    UNARY_OP = "unary_op"
    POSTFIX_OP = "postfix_op"
    ASSIGNMENT = "assignment"
    CONDITIONAL = "conditional"
    MEMBER_ACCESS = "member_access"
    SUBSCRIPT = "subscript"
    CALL = "call"
    MEMBER_INIT = "member_init"
    LITERAL = "literal"
    IDENTIFIER = "identifier"
    THIS = "this"
    PARENTHESIZED = "parenthesized"
    CAST = "cast"
    INIT_LIST = "init_list"
    NEW = "new"
    DELETE = "delete"
    SIZEOF = "sizeof"
    LAMBDA = "lambda"
    COMMA = "comma"
    UNKNOWN_EXPR = "unknown_expr"

    # Type references
    TYPE = "type"

    @property
    def category(self) -> NodeCategory:
        return _CATEGORY[self]


_DECLARATION_KINDS = {
    NodeKind.TRANSLATION_UNIT, NodeKind.NAMESPACE, NodeKind.CLASS, NodeKind.FIELD,
    NodeKind.FUNCTION, NodeKind.PARAMETER, NodeKind.VARIABLE, NodeKind.TYPE_ALIAS,
    NodeKind.ENUM,
}
_STATEMENT_KINDS = {
    NodeKind.COMPOUND, NodeKind.DECLARATION_STMT, NodeKind.EXPRESSION_STMT, NodeKind.IF,
    NodeKind.FOR, NodeKind.RANGE_FOR, NodeKind.WHILE, NodeKind.DO_WHILE, NodeKind.SWITCH,
    NodeKind.CASE, NodeKind.RETURN, NodeKind.BREAK, NodeKind.CONTINUE, NodeKind.THROW,
    NodeKind.GOTO, NodeKind.LABEL, NodeKind.TRY, NodeKind.CATCH, NodeKind.EMPTY,
    NodeKind.UNKNOWN_STMT,
}

_CATEGORY: Dict[NodeKind, NodeCategory] = {}
for _kind in NodeKind:
    if _kind in _DECLARATION_KINDS:
        _CATEGORY[_kind] = NodeCategory.DECLARATION
    elif _kind in _STATEMENT_KINDS:
        _CATEGORY[_kind] = NodeCategory.STATEMENT
    elif _kind is NodeKind.TYPE:
        _CATEGORY[_kind] = NodeCategory.TYPE_REFERENCE
    else:
        _CATEGORY[_kind] = NodeCategory.EXPRESSION

LOOP_KINDS = frozenset({NodeKind.FOR, NodeKind.RANGE_FOR, NodeKind.WHILE, NodeKind.DO_WHILE})


# ═══════════════════════════════════════════════════════════════════════
#  Syntax nodes
# ═══════════════════════════════════════════════════════════════════════

class SyntaxNode:
    """One node of the Syntax Model.

    Children are owned exclusively and labelled with a *role* (``"condition"``,
    ``"then"``, ``"body"``, ``"left"`` …).  The parent link is a weak
    reference installed when the parent is constructed; nodes are frozen
    once built.

    Attribute meaning depends on the kind:
      name         declared / referenced / member name, operator function name
      operator     operator token for expressions (``"=="``, ``"++"``, ``"->"``)
      value        literal text
      literal_kind "number" | "string" | "char" | "bool" | "null" | "user"
      type_text    normalised declared type (return type for functions)
      owner        qualifying class of an out-of-line member definition
      qualifiers   flags such as ``const``, ``static``, ``constructor``
    """

    __slots__ = (
        "kind", "span", "children", "roles", "name", "operator", "value",
        "literal_kind", "type_text", "owner", "qualifiers",
        "_parent", "_role", "__weakref__",
    )

    def __init__(
        self,
        kind: NodeKind,
        span: SourceSpan,
        children: Sequence[Tuple[str, "SyntaxNode"]] = (),
        name: Optional[str] = None,
        operator: Optional[str] = None,
        value: Optional[str] = None,
        literal_kind: Optional[str] = None,
        type_text: Optional[str] = None,
        owner: Optional[str] = None,
        qualifiers: Iterable[str] = (),
    ):
        setattr_ = object.__setattr__
        setattr_(self, "kind", kind)
        setattr_(self, "span", span)
        setattr_(self, "children", tuple(child for _, child in children))
        setattr_(self, "roles", tuple(role for role, _ in children))
        setattr_(self, "name", name)
        setattr_(self, "operator", operator)
        setattr_(self, "value", value)
        setattr_(self, "literal_kind", literal_kind)
        setattr_(self, "type_text", type_text)
        setattr_(self, "owner", owner)
        setattr_(self, "qualifiers", frozenset(qualifiers))
        setattr_(self, "_parent", None)
        setattr_(self, "_role", None)
        for role, child in children:
            if child._parent is not None:
                raise ValueError(f"{child!r} already has a parent")
            setattr_(child, "_parent", weakref.ref(self))
            setattr_(child, "_role", role)

    def __setattr__(self, name, value):
        raise AttributeError(f"SyntaxNode is immutable (tried to set {name!r})")

    # ── tags ──

    @property
    def category(self) -> NodeCategory:
        return self.kind.category

    def is_kind(self, *kinds: NodeKind) -> bool:
        return self.kind in kinds

    def has(self, qualifier: str) -> bool:
        return qualifier in self.qualifiers

    # ── navigation ──

    @property
    def parent(self) -> Optional["SyntaxNode"]:
        ref = self._parent
        return ref() if ref is not None else None

    @property
    def role(self) -> Optional[str]:
        """Role this node plays in its parent (``None`` for the root)."""
        return self._role

    def child(self, role: str) -> Optional["SyntaxNode"]:
        for child_role, child in zip(self.roles, self.children):
            if child_role == role:
                return child
        return None

    def children_with(self, role: str) -> List["SyntaxNode"]:
        return [child for child_role, child in zip(self.roles, self.children) if child_role == role]

    def ancestors(self) -> Iterator["SyntaxNode"]:
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def enclosing(self, *kinds: NodeKind) -> Optional["SyntaxNode"]:
        for node in self.ancestors():
            if node.kind in kinds:
                return node
        return None

    def walk(self) -> Iterator["SyntaxNode"]:
        """Pre-order traversal of this subtree (self included)."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def is_descendant_of(self, other: "SyntaxNode") -> bool:
        return any(node is other for node in self.ancestors())

    def __repr__(self) -> str:
        label = self.name or self.operator or self.value or ""
        return f"SyntaxNode({self.kind.value}{' ' + label if label else ''} @ {self.span})"


# ═══════════════════════════════════════════════════════════════════════
#  Syntax tree
# ═══════════════════════════════════════════════════════════════════════

class Comment:
    __slots__ = ("span", "text")

    def __init__(self, span: SourceSpan, text: str):
        self.span = span
        self.text = text

    def __repr__(self) -> str:
        return f"Comment({self.text!r} @ {self.span})"


class SyntaxTree:
    """The Syntax Model of one translation unit."""

    def __init__(self, file_id: str, source: Union[bytes, str], root: SyntaxNode,
                 comments: Sequence[Comment] = ()):
        self.file_id = file_id
        self.source_bytes = source.encode("utf-8") if isinstance(source, str) else source
        self.root = root
        self.comments: Tuple[Comment, ...] = tuple(comments)

    @property
    def source_length(self) -> int:
        return len(self.source_bytes)

    def text_of(self, item: Union[SyntaxNode, SourceSpan]) -> str:
        span = item.span if isinstance(item, SyntaxNode) else item
        return self.source_bytes[span.start_offset:span.end_offset].decode("utf-8", errors="replace")

    def walk(self) -> Iterator[SyntaxNode]:
        return self.root.walk()

    def nodes_of_kind(self, *kinds: NodeKind) -> Iterator[SyntaxNode]:
        return (node for node in self.root.walk() if node.kind in kinds)

    def functions(self) -> List[SyntaxNode]:
        """Every function definition (nodes with a body), in source order."""
        return [node for node in self.nodes_of_kind(NodeKind.FUNCTION) if node.child("body") is not None]


