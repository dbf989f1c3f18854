"""
C++ front end: tree-sitter-cpp concrete syntax → Syntax Model.

The core of the checker only ever sees ``SyntaxTree`` objects.  This module
is the one place that knows about tree-sitter:

  • parses source bytes with the tree-sitter C++ grammar (one parser per
    thread, since tree-sitter parsers are not thread-safe)
  • rejects files with syntax errors (``ParseError``) unless configured to
    tolerate them, in which case ERROR regions become Unknown nodes
  • lowers declarations, statements and expressions into tagged
    ``SyntaxNode`` objects with role-labelled children
  • collects comments for inline suppressions
"""

import logging
import os
import re
import threading
from typing import Iterator, List, Optional, Sequence, Set, Tuple, Union

import tree_sitter_cpp as tscpp
from tree_sitter import Language, Node, Parser

from idiomcheck.errors import ParseError
from idiomcheck.syntax_model import Comment, NodeKind, SourceSpan, SyntaxNode, SyntaxTree

logger = logging.getLogger(__name__)

CPP_LANGUAGE = Language(tscpp.language())

_thread_state = threading.local()


def _parser() -> Parser:
    """Return the calling thread's parser, creating it on first use."""
    parser = getattr(_thread_state, "parser", None)
    if parser is None:
        parser = Parser(CPP_LANGUAGE)
        _thread_state.parser = parser
    return parser


# ═══════════════════════════════════════════════════════════════════════
#  Text helpers
# ═══════════════════════════════════════════════════════════════════════

_ALTERNATIVE_TOKENS = {
    "and": "&&", "or": "||", "not": "!", "not_eq": "!=", "bitand": "&",
    "bitor": "|", "xor": "^", "compl": "~", "and_eq": "&=", "or_eq": "|=",
    "xor_eq": "^=",
}

_CLASS_SPECIFIERS = {"class_specifier", "struct_specifier", "union_specifier"}

_PREPROC_CONTAINERS = {
    "preproc_if", "preproc_ifdef", "preproc_else", "preproc_elif",
    "preproc_elifdef",
}

_IGNORED_DECLARATIONS = {
    "comment", "access_specifier", "using_declaration", "static_assert_declaration",
    "namespace_alias_definition", "preproc_include", "preproc_def",
    "preproc_function_def", "preproc_call", "concept_definition",
    "friend_declaration", "attribute_declaration", "ERROR",
}

_TYPE_NODES = {
    "type_descriptor", "primitive_type", "type_identifier", "sized_type_specifier",
    "template_type", "qualified_type_identifier", "auto", "placeholder_type_specifier",
    "decltype", "dependent_type",
}

_CAST_KEYWORDS = {"static_cast", "const_cast", "reinterpret_cast", "dynamic_cast"}


def normalize_type(text: str) -> str:
    """Collapse whitespace in a type spelling (``const T &`` → ``const T&``)."""
    text = re.sub(r"\s+", " ", text).strip()
    return re.sub(r"\s*([*&<>,()\[\]]|::)\s*", r"\1", text)


def normalize_operator_name(text: str) -> str:
    """``operator ==`` → ``operator==``; ``operator  new`` → ``operator new``."""
    rest = re.sub(r"\s+", "", text[len("operator"):]) if text.startswith("operator") else text
    if rest and (rest[0].isalpha() or rest[0] == "_"):
        return f"operator {rest}"
    return f"operator{rest}"


def _strip_template_args(name: str) -> str:
    return re.sub(r"<.*>", "", name).strip()


# ═══════════════════════════════════════════════════════════════════════
#  Front end
# ═══════════════════════════════════════════════════════════════════════

class CppFrontEnd:
    """Builds ``SyntaxTree`` objects from C++ source text."""

    def __init__(self, tolerate_syntax_errors: bool = False):
        self.tolerate_syntax_errors = tolerate_syntax_errors

    def parse(self, file_id: str, source: Union[str, bytes]) -> SyntaxTree:
        """Parse one translation unit.  Raises ``ParseError`` on failure."""
        source_bytes = source.encode("utf-8") if isinstance(source, str) else source

        if b"\x00" in source_bytes[:8192]:
            raise ParseError(file_id, "binary file")

        try:
            ts_tree = _parser().parse(source_bytes)
        except Exception as e:
            raise ParseError(file_id, f"parser failure: {e}") from e

        root = ts_tree.root_node
        bad = _first_error(root) if root.has_error and not self.tolerate_syntax_errors else None
        if bad is not None:
            if bad.is_missing:
                message = f"syntax error: missing '{bad.type}'"
            else:
                snippet = source_bytes[bad.start_byte:bad.end_byte].decode("utf-8", errors="replace")
                snippet = snippet.strip().splitlines()[0][:40] if snippet.strip() else bad.type
                message = f"syntax error near '{snippet}'"
            raise ParseError(file_id, message, line=bad.start_point[0] + 1,
                             column=bad.start_point[1] + 1, offset=bad.start_byte)

        lowering = _Lowering(file_id, source_bytes)
        try:
            unit = lowering.translation_unit(root)
        except RecursionError as e:
            raise ParseError(file_id, "nesting too deep to analyse") from e
        logger.debug("Parsed %s: %d bytes, %d comments", file_id, len(source_bytes),
                     len(lowering.comments))
        return SyntaxTree(file_id, source_bytes, unit, lowering.comments)

    def parse_file(self, path: str, file_id: Optional[str] = None) -> SyntaxTree:
        """Read and parse a file from disk (the Source Loader convenience)."""
        file_id = file_id or path.replace("\\", "/")
        if not os.path.isfile(path):
            raise ParseError(file_id, "file not found")
        try:
            with open(path, "rb") as f:
                source = f.read()
        except OSError as e:
            raise ParseError(file_id, f"cannot read file: {e}") from e
        return self.parse(file_id, source)


def _walk(node: Node) -> Iterator[Node]:
    """Yield every node of a tree-sitter subtree in document order."""
    cursor = node.walk()
    visited = False
    while True:
        if not visited:
            yield cursor.node
            if cursor.goto_first_child():
                continue
        if cursor.goto_next_sibling():
            visited = False
            continue
        if cursor.goto_parent():
            visited = True
            continue
        break


def _member_operator_name(node: Node) -> Optional[Node]:
    """The ``operator_name`` of an ERROR left behind by ``obj.operator+(...)``.

    The grammar has no field access whose field is an operator name, so
    ``a.operator+(b)`` parses as a ``call_expression`` holding ``a``, an
    ERROR covering ``.operator+`` and the argument list.
    """
    if node.type != "ERROR" or node.parent is None or node.parent.type != "call_expression":
        return None
    names = [c for c in node.named_children if c.type == "operator_name"]
    if len(names) != 1:
        return None
    access = node.children[0] if node.children[0].type != "operator_name" else node.prev_sibling
    if access is None or access.type not in (".", "->"):
        return None
    return names[0]


def _first_error(root: Node) -> Optional[Node]:
    for node in _walk(root):
        if node.is_missing:
            return node
        if node.type == "ERROR" and _member_operator_name(node) is None:
            return node
    return None


# ═══════════════════════════════════════════════════════════════════════
#  Lowering
# ═══════════════════════════════════════════════════════════════════════

class _Lowering:
    """One-shot conversion of a tree-sitter tree into SyntaxNodes."""

    def __init__(self, file_id: str, source: bytes):
        self.file_id = file_id
        self.source = source
        self.comments: List[Comment] = []

    # ── basic helpers ──

    def span(self, node: Node, end: Optional[Node] = None) -> SourceSpan:
        last = end if end is not None else node
        return SourceSpan(
            file=self.file_id,
            start_offset=node.start_byte,
            start_line=node.start_point[0] + 1,
            start_col=node.start_point[1] + 1,
            end_offset=last.end_byte,
            end_line=last.end_point[0] + 1,
            end_col=last.end_point[1] + 1,
        )

    def text(self, node: Node) -> str:
        return self.source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")

    @staticmethod
    def named(node: Node) -> List[Node]:
        return [c for c in node.named_children if c.type != "comment"]

    def make(self, kind: NodeKind, node: Node, children: Sequence[Tuple[str, Optional[SyntaxNode]]] = (),
             **attrs) -> SyntaxNode:
        kept = [(role, child) for role, child in children if child is not None]
        return SyntaxNode(kind, self.span(node), kept, **attrs)

    def type_node(self, node: Optional[Node], text: Optional[str] = None) -> Optional[SyntaxNode]:
        if node is None:
            return None
        return SyntaxNode(NodeKind.TYPE, self.span(node), name=text or normalize_type(self.text(node)))

    # ── translation unit ──

    def translation_unit(self, root: Node) -> SyntaxNode:
        for node in _walk(root):
            if node.type == "comment":
                self.comments.append(Comment(self.span(node), self.text(node)))
        members = []
        for child in self.named(root):
            members.extend(self.declarations(child))
        return self.make(NodeKind.TRANSLATION_UNIT, root, [("member", m) for m in members])

    # ════════════════════════════════════════════════════════════════
    #  Declarations
    # ════════════════════════════════════════════════════════════════

    def declarations(self, node: Node, class_name: Optional[str] = None,
                     extra: Tuple[str, ...] = ()) -> List[SyntaxNode]:
        """Lower a namespace- or class-level item into zero or more declarations."""
        t = node.type
        if t in _IGNORED_DECLARATIONS:
            return []
        if t == "function_definition":
            fn = self.function(node, class_name, extra)
            return [fn] if fn is not None else []
        if t == "declaration":
            return self.declaration(node, class_name, extra)
        if t == "field_declaration":
            return self.field_declaration(node, class_name, extra)
        if t in _CLASS_SPECIFIERS:
            return [self.class_(node, extra)] if node.child_by_field_name("body") is not None else []
        if t == "enum_specifier":
            return [self.enum(node)] if node.child_by_field_name("body") is not None else []
        if t == "namespace_definition":
            return [self.namespace(node)]
        if t == "linkage_specification":
            body = node.child_by_field_name("body")
            if body is None:
                return []
            if body.type == "declaration_list":
                return [d for c in self.named(body) for d in self.declarations(c, class_name, extra)]
            return self.declarations(body, class_name, extra)
        if t == "template_declaration":
            result = []
            for child in self.named(node):
                if child.type in ("template_parameter_list", "requires_clause"):
                    continue
                result.extend(self.declarations(child, class_name, extra + ("template",)))
            return result
        if t in ("type_definition", "alias_declaration"):
            return self.type_alias(node)
        if t in _PREPROC_CONTAINERS:
            skip = self._preproc_header(node)
            return [d for c in self.named(node) if not self._is_any(c, skip)
                    for d in self.declarations(c, class_name, extra)]
        return []

    def namespace(self, node: Node) -> SyntaxNode:
        name_node = node.child_by_field_name("name")
        body = node.child_by_field_name("body")
        members = []
        if body is not None:
            for child in self.named(body):
                members.extend(self.declarations(child))
        return self.make(NodeKind.NAMESPACE, node, [("member", m) for m in members],
                         name=self.text(name_node) if name_node is not None else None)

    def class_(self, node: Node, extra: Tuple[str, ...] = ()) -> SyntaxNode:
        name_node = node.child_by_field_name("name")
        name = None
        if name_node is not None:
            name = _strip_template_args(self.text(name_node)).split("::")[-1]
        qualifiers = set(extra)
        qualifiers.add(node.type.split("_")[0])
        bases = None
        for child in node.named_children:
            if child.type == "base_class_clause":
                qualifiers.add("has_bases")
                bases = self.text(child).lstrip(":").strip()
        members = []
        body = node.child_by_field_name("body")
        if body is not None:
            for child in self.named(body):
                members.extend(self.declarations(child, class_name=name))
        return self.make(NodeKind.CLASS, node, [("member", m) for m in members],
                         name=name, value=bases, qualifiers=qualifiers)

    def enum(self, node: Node) -> SyntaxNode:
        name_node = node.child_by_field_name("name")
        body = node.child_by_field_name("body")
        enumerators = []
        if body is not None:
            for child in self.named(body):
                if child.type != "enumerator":
                    continue
                ident = child.child_by_field_name("name")
                value = child.child_by_field_name("value")
                enumerators.append(self.make(
                    NodeKind.VARIABLE, child,
                    [("initializer", self.expression(value) if value is not None else None)],
                    name=self.text(ident) if ident is not None else None,
                    qualifiers={"enumerator", "const"},
                ))
        return self.make(NodeKind.ENUM, node, [("member", e) for e in enumerators],
                         name=self.text(name_node) if name_node is not None else None)

    def type_alias(self, node: Node) -> List[SyntaxNode]:
        if node.type == "alias_declaration":
            name_node = node.child_by_field_name("name")
            type_ = node.child_by_field_name("type")
            type_text = normalize_type(self.text(type_)) if type_ is not None else None
            return [self.make(NodeKind.TYPE_ALIAS, node, [("type", self.type_node(type_, type_text))],
                              name=self.text(name_node) if name_node is not None else None,
                              type_text=type_text)]

        # typedef
        base_type, _ = self.specifiers(node)
        aliases = []
        for declarator in node.children_by_field_name("declarator"):
            name_node, markers = self.unwrap_variable_declarator(declarator)
            type_text = normalize_type(base_type + "".join(markers))
            aliases.append(self.make(
                NodeKind.TYPE_ALIAS, node,
                [("type", self.type_node(node.child_by_field_name("type"), type_text))],
                name=self.text(name_node) if name_node is not None else None,
                type_text=type_text,
            ))
        return aliases

    # ── specifiers & declarators ──

    def specifiers(self, node: Node) -> Tuple[str, Set[str]]:
        """Return (type text, qualifier flags) from a declaration's specifiers."""
        parts: List[str] = []
        qualifiers: Set[str] = set()
        type_field = node.child_by_field_name("type")
        for child in node.children:
            t = child.type
            if t == "storage_class_specifier":
                qualifiers.add(self.text(child))
            elif t == "type_qualifier":
                word = self.text(child)
                qualifiers.add(word)
                if word in ("const", "volatile"):
                    parts.append(word)
            elif t in ("attribute_declaration", "attribute_specifier"):
                if "maybe_unused" in self.text(child):
                    qualifiers.add("maybe_unused")
            elif t in ("virtual", "virtual_function_specifier"):
                qualifiers.add("virtual")
            elif t == "explicit_function_specifier":
                qualifiers.add("explicit")
            elif type_field is not None and child == type_field:
                if t in _CLASS_SPECIFIERS or t == "enum_specifier":
                    name_node = child.child_by_field_name("name")
                    parts.append(self.text(name_node) if name_node is not None else t.split("_")[0])
                else:
                    parts.append(self.text(child))
        return normalize_type(" ".join(parts)), qualifiers

    def unwrap_function_declarator(self, node: Optional[Node]) -> Tuple[Optional[Node], List[str]]:
        """Descend pointer/reference wrappers down to a function_declarator."""
        markers: List[str] = []
        while node is not None:
            t = node.type
            if t == "function_declarator":
                return node, markers
            if t == "pointer_declarator":
                markers.append("*")
                node = node.child_by_field_name("declarator")
            elif t == "reference_declarator":
                markers.append("&&" if any(c.type == "&&" for c in node.children) else "&")
                inner = self.named(node)
                node = inner[-1] if inner else None
            elif t in ("parenthesized_declarator", "attributed_declarator"):
                inner = [c for c in self.named(node) if c.type != "attribute"]
                node = inner[0] if inner else None
            else:
                return None, markers
        return None, markers

    def unwrap_variable_declarator(self, node: Optional[Node]) -> Tuple[Optional[Node], List[str]]:
        """Descend to the declared identifier, collecting ``*``, ``&`` and ``[]`` markers."""
        markers: List[str] = []
        while node is not None:
            t = node.type
            if t in ("identifier", "field_identifier", "type_identifier", "qualified_identifier",
                     "destructor_name", "operator_name", "primitive_type"):
                return node, markers
            if t == "pointer_declarator":
                markers.append("*")
                node = node.child_by_field_name("declarator")
            elif t == "reference_declarator":
                markers.append("&&" if any(c.type == "&&" for c in node.children) else "&")
                inner = self.named(node)
                node = inner[-1] if inner else None
            elif t == "array_declarator":
                markers.append("[]")
                node = node.child_by_field_name("declarator")
            elif t == "init_declarator":
                node = node.child_by_field_name("declarator")
            else:
                inner = [c for c in self.named(node) if c.type != "attribute"]
                node = inner[0] if inner else None
        return None, markers

    def declarator_name(self, node: Optional[Node]) -> Tuple[Optional[str], Optional[str], Set[str]]:
        """Return (name, qualifying scope, flags) for a function or variable declarator."""
        if node is None:
            return None, None, set()
        t = node.type
        if t in ("identifier", "field_identifier", "type_identifier", "namespace_identifier"):
            return self.text(node), None, set()
        if t == "destructor_name":
            return re.sub(r"\s+", "", self.text(node)), None, {"destructor"}
        if t == "operator_name":
            return normalize_operator_name(self.text(node)), None, {"operator"}
        if t == "operator_cast":
            type_ = node.child_by_field_name("type")
            spelled = normalize_type(self.text(type_)) if type_ is not None else "?"
            return f"operator {spelled}", None, {"conversion"}
        if t == "qualified_identifier":
            scope = node.child_by_field_name("scope")
            name, inner_owner, flags = self.declarator_name(node.child_by_field_name("name"))
            owner = self.text(scope) if scope is not None else ""
            if inner_owner:
                owner = f"{owner}::{inner_owner}" if owner else inner_owner
            return name, owner or None, flags | {"qualified"}
        if t in ("template_function", "template_method", "template_type"):
            name, owner, flags = self.declarator_name(node.child_by_field_name("name"))
            return name, owner, flags | {"template"}
        inner = node.child_by_field_name("declarator")
        if inner is None:
            named = [c for c in self.named(node) if c.type != "attribute"]
            inner = named[0] if named else None
        if inner is not None:
            return self.declarator_name(inner)
        return self.text(node), None, set()

    # ── functions ──

    def function(self, node: Node, class_name: Optional[str], extra: Tuple[str, ...] = (),
                 declarator: Optional[Node] = None) -> Optional[SyntaxNode]:
        declarator = declarator if declarator is not None else node.child_by_field_name("declarator")
        if declarator is not None and declarator.type == "operator_cast":
            fn_decl, markers = declarator, []
        else:
            fn_decl, markers = self.unwrap_function_declarator(declarator)
        if fn_decl is None:
            return None

        name_decl = fn_decl if fn_decl.type == "operator_cast" else fn_decl.child_by_field_name("declarator")
        name, owner, name_flags = self.declarator_name(name_decl)
        if name is None:
            return None

        qualifiers = set(extra) | name_flags
        base_type, spec_flags = self.specifiers(node)
        qualifiers |= spec_flags
        qualifiers.discard("qualified")

        member_inits: List[SyntaxNode] = []
        for child in node.children:
            t = child.type
            if t == "default_method_clause":
                qualifiers.add("default")
            elif t == "delete_method_clause":
                qualifiers.add("delete")
            elif t == "pure_virtual_clause":
                qualifiers.update(("pure", "virtual"))
            elif t == "field_initializer_list":
                member_inits = [self.member_init(c) for c in self.named(child)
                                if c.type == "field_initializer"]
            elif t == "virtual":
                qualifiers.add("virtual")

        trailing_type = None
        for child in fn_decl.children:
            t = child.type
            if t == "type_qualifier" and self.text(child) == "const":
                qualifiers.add("const_method")
            elif t == "virtual_specifier":
                qualifiers.add(self.text(child))
            elif t == "noexcept":
                qualifiers.add("noexcept")
            elif t == "trailing_return_type":
                trailing_type = child

        if name.startswith("~"):
            qualifiers.add("destructor")
        else:
            owner_class = _strip_template_args(owner.split("::")[-1]) if owner else None
            if (class_name is not None and name == class_name and owner is None) or name == owner_class:
                qualifiers.add("constructor")

        if "const" in qualifiers:
            # ``const`` in the specifiers belongs to the return type
            qualifiers.discard("const")
            qualifiers.add("const_return")
        if "const_method" in qualifiers:
            qualifiers.discard("const_method")
            qualifiers.add("const")

        type_field = node.child_by_field_name("type")
        type_text = None
        if trailing_type is not None:
            type_text = normalize_type(self.text(trailing_type).lstrip("-> ").strip())
        elif base_type or markers:
            type_text = normalize_type(base_type + "".join(markers))

        params_node = fn_decl.child_by_field_name("parameters") if fn_decl.type == "function_declarator" else None
        params = self.parameters(params_node) if params_node is not None else []

        body_node = node.child_by_field_name("body")
        body = None
        if body_node is not None:
            body = self.statement(body_node)
        else:
            qualifiers.add("declaration")

        children: List[Tuple[str, Optional[SyntaxNode]]] = [("return_type", self.type_node(type_field, type_text))]
        children += [("parameter", p) for p in params]
        children += [("member_init", m) for m in member_inits]
        children.append(("body", body))
        return self.make(NodeKind.FUNCTION, node, children, name=name, owner=owner,
                         type_text=type_text, qualifiers=qualifiers)

    def parameters(self, params_node: Node) -> List[SyntaxNode]:
        params = []
        for child in self.named(params_node):
            if child.type not in ("parameter_declaration", "optional_parameter_declaration",
                                  "variadic_parameter_declaration"):
                continue
            base_type, flags = self.specifiers(child)
            declarator = child.child_by_field_name("declarator")
            name_node, markers = self.unwrap_variable_declarator(declarator)
            if declarator is not None and declarator.type.startswith("abstract_"):
                name_node = None
                markers = [m for m in ("*", "&&", "&") if m in self.text(declarator)][:1]
            default = child.child_by_field_name("default_value")
            type_text = normalize_type(base_type + "".join(markers))
            if "*" in markers:
                flags.add("pointer")
            if "&" in markers or "&&" in markers:
                flags.add("reference")
            params.append(self.make(
                NodeKind.PARAMETER, child,
                [("type", self.type_node(child.child_by_field_name("type"), type_text)),
                 ("default", self.expression(default) if default is not None else None)],
                name=self.text(name_node) if name_node is not None else None,
                type_text=type_text, qualifiers=flags,
            ))
        return params

    def member_init(self, node: Node) -> SyntaxNode:
        target = None
        args: List[SyntaxNode] = []
        for child in self.named(node):
            if child.type in ("argument_list", "initializer_list"):
                args = [self.expression(a) for a in self.named(child)]
            elif target is None:
                target = child
        name = None
        qualifiers: Set[str] = set()
        if target is not None:
            name, owner, flags = self.declarator_name(target)
            if owner is not None or "template" in flags or target.type != "field_identifier":
                qualifiers.add("base_or_qualified")
        return self.make(NodeKind.MEMBER_INIT, node, [("argument", a) for a in args],
                         name=name, qualifiers=qualifiers)

    # ── variables & fields ──

    def declaration(self, node: Node, class_name: Optional[str], extra: Tuple[str, ...] = ()) -> List[SyntaxNode]:
        results: List[SyntaxNode] = []
        type_field = node.child_by_field_name("type")
        if type_field is not None and type_field.child_by_field_name("body") is not None:
            if type_field.type in _CLASS_SPECIFIERS:
                results.append(self.class_(type_field))
            elif type_field.type == "enum_specifier":
                results.append(self.enum(type_field))

        base_type, flags = self.specifiers(node)
        for declarator in node.children_by_field_name("declarator"):
            if declarator.type != "init_declarator":
                fn_decl, _ = self.unwrap_function_declarator(declarator)
                if fn_decl is not None or declarator.type == "operator_cast":
                    fn = self.function(node, class_name, extra, declarator=declarator)
                    if fn is not None:
                        results.append(fn)
                    continue
            results.append(self.variable(node, declarator, base_type, flags, NodeKind.VARIABLE))
        return results

    def field_declaration(self, node: Node, class_name: Optional[str], extra: Tuple[str, ...] = ()) -> List[SyntaxNode]:
        results: List[SyntaxNode] = []
        type_field = node.child_by_field_name("type")
        if type_field is not None and type_field.child_by_field_name("body") is not None:
            if type_field.type in _CLASS_SPECIFIERS:
                results.append(self.class_(type_field))
            elif type_field.type == "enum_specifier":
                results.append(self.enum(type_field))

        base_type, flags = self.specifiers(node)
        declarators = node.children_by_field_name("declarator")
        defaults = node.children_by_field_name("default_value")
        for i, declarator in enumerate(declarators):
            fn_decl, _ = self.unwrap_function_declarator(declarator)
            if fn_decl is not None or declarator.type == "operator_cast":
                fn = self.function(node, class_name, extra, declarator=declarator)
                if fn is not None:
                    results.append(fn)
                continue
            next_start = declarators[i + 1].start_byte if i + 1 < len(declarators) else node.end_byte
            default = next((d for d in defaults
                            if declarator.end_byte <= d.start_byte < next_start), None)
            results.append(self.variable(node, declarator, base_type, flags, NodeKind.FIELD,
                                         default=default))
        return results

    def variable(self, decl_node: Node, declarator: Node, base_type: str, flags: Set[str],
                 kind: NodeKind, default: Optional[Node] = None) -> SyntaxNode:
        qualifiers = set(flags)
        initializer = None
        target = declarator
        if declarator.type == "init_declarator":
            target = declarator.child_by_field_name("declarator")
            value = declarator.child_by_field_name("value")
            if value is not None and value.type == "argument_list":
                qualifiers.add("ctor_args")
                initializer = self.make(NodeKind.INIT_LIST, value,
                                        [("element", self.expression(a)) for a in self.named(value)],
                                        qualifiers={"ctor_args"})
            elif value is not None:
                initializer = self.expression(value)
        elif default is not None:
            initializer = self.expression(default)

        name_node, markers = self.unwrap_variable_declarator(target)
        if "*" in markers:
            qualifiers.add("pointer")
        if "&" in markers or "&&" in markers:
            qualifiers.add("reference")
        if "[]" in markers:
            qualifiers.add("array")
        type_text = normalize_type(base_type + "".join(markers))
        name = None
        if name_node is not None:
            name = self.declarator_name(name_node)[0]
        return SyntaxNode(
            kind, self.span(declarator),
            [(role, child) for role, child in (
                ("type", self.type_node(decl_node.child_by_field_name("type"), type_text)),
                ("initializer", initializer),
            ) if child is not None],
            name=name, type_text=type_text, qualifiers=qualifiers,
        )

    # ════════════════════════════════════════════════════════════════
    #  Statements
    # ════════════════════════════════════════════════════════════════

    def statement(self, node: Node) -> SyntaxNode:
        t = node.type
        handler = getattr(self, f"_stmt_{t}", None)
        if handler is not None:
            return handler(node)
        if t in ("declaration", "type_definition", "alias_declaration") or t in _CLASS_SPECIFIERS \
                or t == "enum_specifier":
            return self._declaration_statement(node)
        if t in _PREPROC_CONTAINERS:
            skip = self._preproc_header(node)
            return self.make(NodeKind.UNKNOWN_STMT, node,
                             [("body", self.statement(c)) for c in self.named(node)
                              if not self._is_any(c, skip)],
                             value=t)
        if t in ("preproc_def", "preproc_function_def", "preproc_call", "preproc_include",
                 "using_declaration", "static_assert_declaration", "namespace_alias_definition",
                 "attribute_declaration"):
            return self.make(NodeKind.EMPTY, node)
        if t == "ERROR":
            return self.make(NodeKind.UNKNOWN_STMT, node, value="ERROR")
        return self.make(NodeKind.UNKNOWN_STMT, node,
                         [("operand", self.expression(c)) for c in self.named(node)], value=t)

    def _declaration_statement(self, node: Node) -> SyntaxNode:
        if node.type in ("type_definition", "alias_declaration"):
            decls = self.type_alias(node)
        elif node.type in _CLASS_SPECIFIERS:
            decls = [self.class_(node)] if node.child_by_field_name("body") is not None else []
        elif node.type == "enum_specifier":
            decls = [self.enum(node)] if node.child_by_field_name("body") is not None else []
        else:
            decls = self.declaration(node, None)
        return self.make(NodeKind.DECLARATION_STMT, node, [("declarator", d) for d in decls])

    def _stmt_compound_statement(self, node: Node) -> SyntaxNode:
        return self.make(NodeKind.COMPOUND, node,
                         [("statement", self.statement(c)) for c in self.named(node)])

    def _stmt_expression_statement(self, node: Node) -> SyntaxNode:
        inner = self.named(node)
        if not inner:
            return self.make(NodeKind.EMPTY, node)
        return self.make(NodeKind.EXPRESSION_STMT, node, [("expression", self.expression(inner[0]))])

    def _stmt_attributed_statement(self, node: Node) -> SyntaxNode:
        inner = [c for c in self.named(node) if c.type != "attribute_declaration"]
        if not inner:
            return self.make(NodeKind.EMPTY, node)
        return self.statement(inner[-1])

    def _condition(self, node: Optional[Node]) -> Tuple[Optional[SyntaxNode], Optional[SyntaxNode]]:
        """Split a condition clause into (init statement, condition)."""
        if node is None:
            return None, None
        if node.type != "condition_clause":
            return None, self.expression(node)
        init_node = node.child_by_field_name("initializer")
        value = node.child_by_field_name("value")
        if value is None:
            named = [c for c in self.named(node) if init_node is None or c != init_node]
            value = named[-1] if named else None
        init = self.statement(init_node) if init_node is not None else None
        if value is None:
            return init, None
        if value.type == "declaration":
            decls = self.declaration(value, None)
            return init, decls[0] if decls else None
        return init, self.expression(value)

    def _stmt_if_statement(self, node: Node) -> SyntaxNode:
        init, condition = self._condition(node.child_by_field_name("condition"))
        consequence = node.child_by_field_name("consequence")
        alternative = node.child_by_field_name("alternative")
        if alternative is not None and alternative.type == "else_clause":
            inner = self.named(alternative)
            alternative = inner[0] if inner else None
        qualifiers = {"constexpr"} if any(c.type == "constexpr" for c in node.children) else set()
        return self.make(NodeKind.IF, node, [
            ("init", init),
            ("condition", condition),
            ("then", self.statement(consequence) if consequence is not None else None),
            ("else", self.statement(alternative) if alternative is not None else None),
        ], qualifiers=qualifiers)

    def _stmt_while_statement(self, node: Node) -> SyntaxNode:
        init, condition = self._condition(node.child_by_field_name("condition"))
        body = node.child_by_field_name("body")
        return self.make(NodeKind.WHILE, node, [
            ("init", init),
            ("condition", condition),
            ("body", self.statement(body) if body is not None else None),
        ])

    def _stmt_do_statement(self, node: Node) -> SyntaxNode:
        body = node.child_by_field_name("body")
        condition = node.child_by_field_name("condition")
        if condition is not None and condition.type == "parenthesized_expression":
            inner = self.named(condition)
            condition = inner[0] if inner else None
        return self.make(NodeKind.DO_WHILE, node, [
            ("body", self.statement(body) if body is not None else None),
            ("condition", self.expression(condition) if condition is not None else None),
        ])

    def _stmt_for_statement(self, node: Node) -> SyntaxNode:
        init_node = node.child_by_field_name("initializer")
        init = None
        if init_node is not None:
            if init_node.type == "declaration":
                init = self._declaration_statement(init_node)
            else:
                init = self.make(NodeKind.EXPRESSION_STMT, init_node,
                                 [("expression", self.expression(init_node))])
        condition = node.child_by_field_name("condition")
        update = node.child_by_field_name("update")
        body = node.child_by_field_name("body")
        return self.make(NodeKind.FOR, node, [
            ("init", init),
            ("condition", self.expression(condition) if condition is not None else None),
            ("update", self.expression(update) if update is not None else None),
            ("body", self.statement(body) if body is not None else None),
        ])

    def _stmt_for_range_loop(self, node: Node) -> SyntaxNode:
        base_type, flags = self.specifiers(node)
        declarator = node.child_by_field_name("declarator")
        variable = None
        if declarator is not None:
            variable = self.variable(node, declarator, base_type, flags, NodeKind.VARIABLE)
        right = node.child_by_field_name("right")
        body = node.child_by_field_name("body")
        return self.make(NodeKind.RANGE_FOR, node, [
            ("declarator", variable),
            ("range", self.expression(right) if right is not None else None),
            ("body", self.statement(body) if body is not None else None),
        ])

    def _stmt_switch_statement(self, node: Node) -> SyntaxNode:
        init, condition = self._condition(node.child_by_field_name("condition"))
        body = node.child_by_field_name("body")
        return self.make(NodeKind.SWITCH, node, [
            ("init", init),
            ("condition", condition),
            ("body", self.statement(body) if body is not None else None),
        ])

    def _stmt_case_statement(self, node: Node) -> SyntaxNode:
        value = node.child_by_field_name("value")
        is_default = bool(node.children) and node.children[0].type == "default"
        statements = [c for c in self.named(node) if value is None or c != value]
        return self.make(NodeKind.CASE, node, [
            ("value", self.expression(value) if value is not None else None),
        ] + [("body", self.statement(c)) for c in statements],
            qualifiers={"default"} if is_default else set())

    def _stmt_return_statement(self, node: Node) -> SyntaxNode:
        inner = self.named(node)
        return self.make(NodeKind.RETURN, node,
                         [("value", self.expression(inner[0]) if inner else None)])

    def _stmt_co_return_statement(self, node: Node) -> SyntaxNode:
        return self._stmt_return_statement(node)

    def _stmt_break_statement(self, node: Node) -> SyntaxNode:
        return self.make(NodeKind.BREAK, node)

    def _stmt_continue_statement(self, node: Node) -> SyntaxNode:
        return self.make(NodeKind.CONTINUE, node)

    def _stmt_goto_statement(self, node: Node) -> SyntaxNode:
        label = node.child_by_field_name("label")
        return self.make(NodeKind.GOTO, node, name=self.text(label) if label is not None else None)

    def _stmt_labeled_statement(self, node: Node) -> SyntaxNode:
        label = node.child_by_field_name("label")
        inner = [c for c in self.named(node) if label is None or c != label]
        return self.make(NodeKind.LABEL, node,
                         [("body", self.statement(inner[-1]) if inner else None)],
                         name=self.text(label) if label is not None else None)

    def _stmt_throw_statement(self, node: Node) -> SyntaxNode:
        inner = self.named(node)
        return self.make(NodeKind.THROW, node,
                         [("value", self.expression(inner[0]) if inner else None)])

    def _stmt_try_statement(self, node: Node) -> SyntaxNode:
        body = node.child_by_field_name("body")
        handlers = []
        for child in self.named(node):
            if child.type != "catch_clause":
                continue
            params = child.child_by_field_name("parameters")
            handler_body = child.child_by_field_name("body")
            handlers.append(self.make(NodeKind.CATCH, child,
                                      [("parameter", p) for p in
                                       (self.parameters(params) if params is not None else [])]
                                      + [("body", self.statement(handler_body)
                                          if handler_body is not None else None)]))
        return self.make(NodeKind.TRY, node,
                         [("body", self.statement(body) if body is not None else None)]
                         + [("handler", h) for h in handlers])

    # ── preprocessor helpers ──

    def _preproc_header(self, node: Node) -> List[Node]:
        return [c for c in (node.child_by_field_name("name"), node.child_by_field_name("condition"))
                if c is not None]

    @staticmethod
    def _is_any(node: Node, candidates: List[Node]) -> bool:
        return any(node == c for c in candidates)

    # ════════════════════════════════════════════════════════════════
    #  Expressions
    # ════════════════════════════════════════════════════════════════

    def expression(self, node: Node) -> SyntaxNode:
        t = node.type
        handler = getattr(self, f"_expr_{t}", None)
        if handler is not None:
            return handler(node)
        if t in _TYPE_NODES:
            return self.type_node(node)
        if t == "ERROR":
            return self.make(NodeKind.UNKNOWN_EXPR, node, value="ERROR")
        return self.make(NodeKind.UNKNOWN_EXPR, node,
                         [("operand", self.expression(c)) for c in self.named(node)], value=t)

    def _op(self, node: Node, field: str = "operator") -> Optional[str]:
        op_node = node.child_by_field_name(field)
        if op_node is None:
            return None
        text = self.text(op_node).strip()
        return _ALTERNATIVE_TOKENS.get(text, text)

    def _expr_identifier(self, node: Node) -> SyntaxNode:
        return self.make(NodeKind.IDENTIFIER, node, name=self.text(node))

    _expr_field_identifier = _expr_identifier
    _expr_namespace_identifier = _expr_identifier

    def _expr_qualified_identifier(self, node: Node) -> SyntaxNode:
        name, owner, flags = self.declarator_name(node)
        return self.make(NodeKind.IDENTIFIER, node, name=name, owner=owner,
                         qualifiers=flags | {"qualified"})

    def _expr_template_function(self, node: Node) -> SyntaxNode:
        name, owner, flags = self.declarator_name(node)
        return self.make(NodeKind.IDENTIFIER, node, name=name, owner=owner, qualifiers=flags)

    def _expr_operator_name(self, node: Node) -> SyntaxNode:
        return self.make(NodeKind.IDENTIFIER, node, name=normalize_operator_name(self.text(node)),
                         qualifiers={"operator"})

    def _expr_destructor_name(self, node: Node) -> SyntaxNode:
        return self.make(NodeKind.IDENTIFIER, node, name=re.sub(r"\s+", "", self.text(node)))

    def _expr_this(self, node: Node) -> SyntaxNode:
        return self.make(NodeKind.THIS, node)

    def _literal(self, node: Node, literal_kind: str) -> SyntaxNode:
        return self.make(NodeKind.LITERAL, node, value=self.text(node), literal_kind=literal_kind)

    def _expr_number_literal(self, node: Node) -> SyntaxNode:
        return self._literal(node, "number")

    def _expr_string_literal(self, node: Node) -> SyntaxNode:
        return self._literal(node, "string")

    _expr_raw_string_literal = _expr_string_literal
    _expr_concatenated_string = _expr_string_literal

    def _expr_char_literal(self, node: Node) -> SyntaxNode:
        return self._literal(node, "char")

    def _expr_true(self, node: Node) -> SyntaxNode:
        return self.make(NodeKind.LITERAL, node, value="true", literal_kind="bool")

    def _expr_false(self, node: Node) -> SyntaxNode:
        return self.make(NodeKind.LITERAL, node, value="false", literal_kind="bool")

    def _expr_null(self, node: Node) -> SyntaxNode:
        return self._literal(node, "null")

    _expr_nullptr = _expr_null

    def _expr_user_defined_literal(self, node: Node) -> SyntaxNode:
        return self._literal(node, "user")

    def _expr_binary_expression(self, node: Node) -> SyntaxNode:
        left = node.child_by_field_name("left")
        right = node.child_by_field_name("right")
        if left is not None and right is not None and self.text(left) == "operator" \
                and right.type == "parenthesized_expression":
            return self._free_operator_call(node, left, right)
        return self.make(NodeKind.BINARY_OP, node, [
            ("left", self.expression(left) if left is not None else None),
            ("right", self.expression(right) if right is not None else None),
        ], operator=self._op(node))

    def _expr_unary_expression(self, node: Node) -> SyntaxNode:
        argument = node.child_by_field_name("argument")
        return self.make(NodeKind.UNARY_OP, node,
                         [("operand", self.expression(argument) if argument is not None else None)],
                         operator=self._op(node), qualifiers={"prefix"})

    _expr_pointer_expression = _expr_unary_expression

    def _expr_update_expression(self, node: Node) -> SyntaxNode:
        argument = node.child_by_field_name("argument")
        operator = self._op(node)
        prefix = bool(node.children) and node.children[0].type in ("++", "--")
        kind = NodeKind.UNARY_OP if prefix else NodeKind.POSTFIX_OP
        return self.make(kind, node,
                         [("operand", self.expression(argument) if argument is not None else None)],
                         operator=operator, qualifiers={"prefix" if prefix else "postfix"})

    def _expr_assignment_expression(self, node: Node) -> SyntaxNode:
        left = node.child_by_field_name("left")
        right = node.child_by_field_name("right")
        return self.make(NodeKind.ASSIGNMENT, node, [
            ("left", self.expression(left) if left is not None else None),
            ("right", self.expression(right) if right is not None else None),
        ], operator=self._op(node))

    def _expr_conditional_expression(self, node: Node) -> SyntaxNode:
        parts = [node.child_by_field_name(f) for f in ("condition", "consequence", "alternative")]
        return self.make(NodeKind.CONDITIONAL, node, [
            (role, self.expression(part) if part is not None else None)
            for role, part in zip(("condition", "then", "else"), parts)
        ])

    def _expr_field_expression(self, node: Node) -> SyntaxNode:
        argument = node.child_by_field_name("argument")
        field = node.child_by_field_name("field")
        arrow = any(c.type == "->" for c in node.children)
        name = None
        if field is not None:
            name = self.declarator_name(field)[0]
        return self.make(NodeKind.MEMBER_ACCESS, node,
                         [("object", self.expression(argument) if argument is not None else None)],
                         name=name, operator="->" if arrow else ".",
                         qualifiers={"arrow"} if arrow else set())

    def _expr_subscript_expression(self, node: Node) -> SyntaxNode:
        argument = node.child_by_field_name("argument")
        index = node.child_by_field_name("index")
        indices = [index] if index is not None else []
        if not indices:
            holder = node.child_by_field_name("indices")
            if holder is not None:
                indices = self.named(holder)
        return self.make(NodeKind.SUBSCRIPT, node,
                         [("object", self.expression(argument) if argument is not None else None)]
                         + [("index", self.expression(i)) for i in indices])

    def _expr_call_expression(self, node: Node) -> SyntaxNode:
        function = node.child_by_field_name("function")
        arguments = node.child_by_field_name("arguments")
        args = [self.expression(a) for a in self.named(arguments)] if arguments is not None else []

        if function is not None and function.type == "template_function":
            name_node = function.child_by_field_name("name")
            if name_node is not None and self.text(name_node) in _CAST_KEYWORDS and len(args) == 1:
                targs = function.child_by_field_name("arguments")
                type_text = normalize_type(self.text(targs).strip("<>")) if targs is not None else None
                return self.make(NodeKind.CAST, node, [("operand", args[0])],
                                 name=self.text(name_node), type_text=type_text)

        member_operator = next((c for c in node.children if _member_operator_name(c) is not None), None)
        if member_operator is not None and function is not None:
            callee = self._member_operator_callee(function, member_operator)
        else:
            callee = self.expression(function) if function is not None else None
        name = callee.name if callee is not None and callee.kind in (
            NodeKind.IDENTIFIER, NodeKind.MEMBER_ACCESS) else None
        return self.make(NodeKind.CALL, node,
                         [("callee", callee)] + [("argument", a) for a in args], name=name)

    def _member_operator_callee(self, obj: Node, error: Node) -> SyntaxNode:
        operator_name = _member_operator_name(error)
        arrow = b"->" in self.source[obj.end_byte:operator_name.start_byte]
        return SyntaxNode(NodeKind.MEMBER_ACCESS, self.span(obj, error),
                          [("object", self.expression(obj))],
                          name=normalize_operator_name(self.text(operator_name)),
                          operator="->" if arrow else ".",
                          qualifiers={"arrow"} if arrow else set())

    def _free_operator_call(self, node: Node, left: Node, right: Node) -> SyntaxNode:
        """``operator==(a, b)`` comes back as ``operator == (a, b)``; rebuild the call."""
        op_node = node.child_by_field_name("operator")
        callee = SyntaxNode(NodeKind.IDENTIFIER, self.span(left, op_node),
                            name=normalize_operator_name("operator" + self.text(op_node)),
                            qualifiers={"operator"})
        inner = self.named(right)
        operands = self._comma_operands(inner[0]) if inner else []
        return self.make(NodeKind.CALL, node,
                         [("callee", callee)] + [("argument", self.expression(o)) for o in operands],
                         name=callee.name)

    def _comma_operands(self, node: Node) -> List[Node]:
        if node.type != "comma_expression":
            return [node]
        operands = []
        for field in ("left", "right"):
            part = node.child_by_field_name(field)
            if part is not None:
                operands.extend(self._comma_operands(part))
        return operands

    def _expr_parenthesized_expression(self, node: Node) -> SyntaxNode:
        inner = self.named(node)
        return self.make(NodeKind.PARENTHESIZED, node,
                         [("operand", self.expression(inner[0]) if inner else None)])

    def _expr_comma_expression(self, node: Node) -> SyntaxNode:
        left = node.child_by_field_name("left")
        right = node.child_by_field_name("right")
        return self.make(NodeKind.COMMA, node, [
            ("left", self.expression(left) if left is not None else None),
            ("right", self.expression(right) if right is not None else None),
        ])

    def _expr_cast_expression(self, node: Node) -> SyntaxNode:
        type_ = node.child_by_field_name("type")
        value = node.child_by_field_name("value")
        return self.make(NodeKind.CAST, node,
                         [("operand", self.expression(value) if value is not None else None)],
                         type_text=normalize_type(self.text(type_)) if type_ is not None else None)

    def _expr_sizeof_expression(self, node: Node) -> SyntaxNode:
        value = node.child_by_field_name("value")
        type_ = node.child_by_field_name("type")
        return self.make(NodeKind.SIZEOF, node,
                         [("operand", self.expression(value) if value is not None else None)],
                         type_text=normalize_type(self.text(type_)) if type_ is not None else None)

    _expr_alignof_expression = _expr_sizeof_expression

    def _expr_new_expression(self, node: Node) -> SyntaxNode:
        type_ = node.child_by_field_name("type")
        arguments = node.child_by_field_name("arguments")
        args = [self.expression(a) for a in self.named(arguments)] if arguments is not None else []
        return self.make(NodeKind.NEW, node, [("argument", a) for a in args],
                         type_text=normalize_type(self.text(type_)) if type_ is not None else None)

    def _expr_delete_expression(self, node: Node) -> SyntaxNode:
        inner = [c for c in self.named(node)]
        return self.make(NodeKind.DELETE, node,
                         [("operand", self.expression(inner[-1]) if inner else None)])

    def _expr_lambda_expression(self, node: Node) -> SyntaxNode:
        declarator = node.child_by_field_name("declarator")
        params_node = declarator.child_by_field_name("parameters") if declarator is not None else None
        params = self.parameters(params_node) if params_node is not None else []
        body = node.child_by_field_name("body")
        return self.make(NodeKind.LAMBDA, node,
                         [("parameter", p) for p in params]
                         + [("body", self.statement(body) if body is not None else None)])

    def _expr_initializer_list(self, node: Node) -> SyntaxNode:
        return self.make(NodeKind.INIT_LIST, node,
                         [("element", self.expression(c)) for c in self.named(node)])

    def _expr_argument_list(self, node: Node) -> SyntaxNode:
        return self.make(NodeKind.INIT_LIST, node,
                         [("element", self.expression(c)) for c in self.named(node)],
                         qualifiers={"ctor_args"})

    def _expr_condition_clause(self, node: Node) -> SyntaxNode:
        _, condition = self._condition(node)
        if condition is None:
            return self.make(NodeKind.UNKNOWN_EXPR, node)
        return condition
