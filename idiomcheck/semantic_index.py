"""
Semantic Index: scopes, symbols, read/write sites and CFGs for one
translation unit.

Built by a single top-to-bottom pass over the Syntax Model:
  • scopes are pushed for namespaces, classes, functions, blocks and the
    headers of for/if/while/switch/catch
  • class members are declared before any member body is resolved
  • every identifier is resolved by outward lookup; the context it appears
    in decides whether it is a read, a definite write, or a possible write
  • anything that cannot be resolved maps to ``UNKNOWN_SYMBOL``

After construction all site lists are frozen and the index is shared
read-only between checks.
"""

import logging
import re
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from idiomcheck.control_flow import ControlFlowGraph, build_cfg
from idiomcheck.syntax_helpers import enclosing_statement, strip_parens
from idiomcheck.syntax_model import NodeKind, SourceSpan, SyntaxNode, SyntaxTree

logger = logging.getLogger(__name__)


class SymbolKind(str, Enum):
    VARIABLE = "variable"
    PARAMETER = "parameter"
    FIELD = "field"
    FUNCTION = "function"
    METHOD = "method"
    CLASS = "class"
    UNKNOWN = "unknown"


class ScopeKind(str, Enum):
    GLOBAL = "global"
    NAMESPACE = "namespace"
    CLASS = "class"
    FUNCTION = "function"
    BLOCK = "block"


@dataclass(frozen=True)
class SymbolSite:
    """One read or write of a symbol."""
    span: SourceSpan
    node: SyntaxNode
    statement: Optional[SyntaxNode]
    definite: bool = True


# ═══════════════════════════════════════════════════════════════════════
#  Symbols & scopes
# ═══════════════════════════════════════════════════════════════════════

class Symbol:
    """A named entity.  Overloads and redeclarations share one Symbol."""

    def __init__(self, name: str, kind: SymbolKind, scope: Optional["Scope"] = None,
                 declaration: Optional[SyntaxNode] = None, declared_type: Optional[str] = None,
                 is_const: bool = False):
        self.name = name
        self.kind = kind
        self.declared_type = declared_type
        self.is_const = is_const
        self.declaration = declaration
        self.declarations: List[SyntaxNode] = [declaration] if declaration is not None else []
        self.reads: List[SymbolSite] = []
        self.writes: List[SymbolSite] = []
        self._scope = weakref.ref(scope) if scope is not None else None
        self.qualified_name = scope.qualify(name) if scope is not None else name

    @property
    def scope(self) -> Optional["Scope"]:
        return self._scope() if self._scope is not None else None

    @property
    def is_unknown(self) -> bool:
        return self.kind is SymbolKind.UNKNOWN

    @property
    def definite_writes(self) -> List[SymbolSite]:
        return [w for w in self.writes if w.definite]

    @property
    def possible_writes(self) -> List[SymbolSite]:
        return [w for w in self.writes if not w.definite]

    def freeze(self) -> None:
        self.declarations = tuple(self.declarations)
        self.reads = tuple(self.reads)
        self.writes = tuple(self.writes)

    def __repr__(self) -> str:
        return f"Symbol({self.kind.value} {self.qualified_name})"


UNKNOWN_SYMBOL = Symbol("<unknown>", SymbolKind.UNKNOWN)
UNKNOWN_SYMBOL.freeze()


class Scope:
    def __init__(self, kind: ScopeKind, node: Optional[SyntaxNode],
                 parent: Optional["Scope"] = None, name: Optional[str] = None):
        self.kind = kind
        self.node = node
        self.name = name
        self.symbols: Dict[str, Symbol] = {}
        self.children: List["Scope"] = []
        self._parent = weakref.ref(parent) if parent is not None else None

    @property
    def parent(self) -> Optional["Scope"]:
        return self._parent() if self._parent is not None else None

    def qualify(self, name: str) -> str:
        parts = [name]
        scope = self
        while scope is not None:
            if scope.kind in (ScopeKind.NAMESPACE, ScopeKind.CLASS) and scope.name:
                parts.append(scope.name)
            scope = scope.parent
        return "::".join(reversed(parts))

    def declare(self, name: str, kind: SymbolKind, node: Optional[SyntaxNode],
                declared_type: Optional[str] = None, is_const: bool = False) -> Symbol:
        existing = self.symbols.get(name)
        if existing is not None:
            if node is not None:
                existing.declarations.append(node)
            if existing.kind in (SymbolKind.FUNCTION, SymbolKind.METHOD):
                existing.is_const = existing.is_const and is_const
            return existing
        symbol = Symbol(name, kind, self, node, declared_type, is_const)
        self.symbols[name] = symbol
        return symbol

    def lookup_local(self, name: str) -> Optional[Symbol]:
        return self.symbols.get(name)

    def lookup(self, name: str) -> Optional[Symbol]:
        scope = self
        while scope is not None:
            symbol = scope.symbols.get(name)
            if symbol is not None:
                return symbol
            scope = scope.parent
        return None

    def enclosing(self, kind: ScopeKind) -> Optional["Scope"]:
        scope = self
        while scope is not None:
            if scope.kind is kind:
                return scope
            scope = scope.parent
        return None

    def __repr__(self) -> str:
        return f"Scope({self.kind.value} {self.name or ''}, {len(self.symbols)} symbols)"


def _class_key(owner: str) -> str:
    return re.sub(r"<.*>", "", owner.split("::")[-1]).strip()


# ═══════════════════════════════════════════════════════════════════════
#  Index
# ═══════════════════════════════════════════════════════════════════════

class SemanticIndex:
    """Read-only symbol and control-flow information for one SyntaxTree."""

    def __init__(self, tree: SyntaxTree):
        self.tree = tree
        self.global_scope = Scope(ScopeKind.GLOBAL, tree.root)
        self._scopes: List[Scope] = [self.global_scope]
        self._symbols: List[Symbol] = []
        self._node_scope: Dict[int, Scope] = {}
        self._resolution: Dict[int, Symbol] = {}
        self._declared: Dict[int, Symbol] = {}
        self._class_scopes: Dict[str, Scope] = {}
        self._namespaces: Dict[Tuple[int, str], Scope] = {}
        self._function_class: Dict[int, Optional[Scope]] = {}
        self._cfgs: Dict[int, ControlFlowGraph] = {}

        self._visit(tree.root, self.global_scope)
        for symbol in self._symbols:
            symbol.freeze()
        logger.debug("Indexed %s: %d scopes, %d symbols, %d CFGs", tree.file_id,
                     len(self._scopes), len(self._symbols), len(self._cfgs))

    # ── queries ──

    def resolve(self, node: SyntaxNode) -> Symbol:
        """Symbol referenced (or declared) by ``node``; ``UNKNOWN_SYMBOL`` if none."""
        symbol = self._resolution.get(id(node))
        if symbol is None:
            symbol = self._declared.get(id(node))
        return symbol if symbol is not None else UNKNOWN_SYMBOL

    def symbol_for_declaration(self, node: SyntaxNode) -> Optional[Symbol]:
        return self._declared.get(id(node))

    def scope_at(self, node: SyntaxNode) -> Scope:
        for candidate in (node, *node.ancestors()):
            scope = self._node_scope.get(id(candidate))
            if scope is not None:
                return scope
        return self.global_scope

    def class_scope(self, name: str) -> Optional[Scope]:
        return self._class_scopes.get(_class_key(name))

    def class_scope_of_function(self, function: SyntaxNode) -> Optional[Scope]:
        return self._function_class.get(id(function))

    def cfg(self, function: SyntaxNode) -> Optional[ControlFlowGraph]:
        return self._cfgs.get(id(function))

    def functions(self) -> List[SyntaxNode]:
        return self.tree.functions()

    def symbols(self) -> List[Symbol]:
        return list(self._symbols)

    def local_variables(self) -> List[Symbol]:
        return [s for s in self._symbols
                if s.kind is SymbolKind.VARIABLE and s.scope is not None
                and s.scope.kind in (ScopeKind.FUNCTION, ScopeKind.BLOCK)]

    @staticmethod
    def fields_of(scope: Scope) -> List[Symbol]:
        return [s for s in scope.symbols.values() if s.kind is SymbolKind.FIELD]

    @staticmethod
    def methods_of(scope: Scope) -> List[Symbol]:
        return [s for s in scope.symbols.values() if s.kind is SymbolKind.METHOD]

    # ────────────────────────────────────────────────────────────────
    #  Construction
    # ────────────────────────────────────────────────────────────────

    def _push(self, kind: ScopeKind, node: Optional[SyntaxNode], parent: Scope,
              name: Optional[str] = None) -> Scope:
        scope = Scope(kind, node, parent, name)
        parent.children.append(scope)
        self._scopes.append(scope)
        return scope

    def _declare(self, scope: Scope, name: Optional[str], kind: SymbolKind, node: SyntaxNode,
                 declared_type: Optional[str] = None, is_const: bool = False) -> Optional[Symbol]:
        if not name:
            return None
        fresh = scope.lookup_local(name) is None
        symbol = scope.declare(name, kind, node, declared_type, is_const)
        if fresh:
            self._symbols.append(symbol)
        self._declared[id(node)] = symbol
        return symbol

    def _visit_all(self, nodes, scope: Scope) -> None:
        for node in nodes:
            self._visit(node, scope)

    def _visit(self, node: SyntaxNode, scope: Scope) -> None:
        self._node_scope[id(node)] = scope
        k = node.kind

        if k is NodeKind.TRANSLATION_UNIT:
            self._visit_all(node.children, scope)
        elif k is NodeKind.NAMESPACE:
            key = (id(scope), node.name or "")
            ns = self._namespaces.get(key)
            if ns is None:
                ns = self._push(ScopeKind.NAMESPACE, node, scope, node.name)
                self._namespaces[key] = ns
            self._visit_all(node.children, ns)
        elif k is NodeKind.CLASS:
            self._visit_class(node, scope)
        elif k is NodeKind.ENUM:
            self._visit_enum(node, scope)
        elif k is NodeKind.FUNCTION:
            self._visit_function_declaration(node, scope)
        elif k is NodeKind.VARIABLE:
            self._visit_variable(node, scope)
        elif k is NodeKind.PARAMETER:
            self._visit_parameter(node, scope, scope)
        elif k is NodeKind.TYPE_ALIAS:
            self._declare(scope, node.name, SymbolKind.CLASS, node, node.type_text)
        elif k is NodeKind.COMPOUND:
            self._visit_all(node.children, self._push(ScopeKind.BLOCK, node, scope))
        elif k in (NodeKind.FOR, NodeKind.RANGE_FOR, NodeKind.IF, NodeKind.WHILE,
                   NodeKind.SWITCH, NodeKind.CATCH):
            self._visit_all(node.children, self._push(ScopeKind.BLOCK, node, scope))
        elif k is NodeKind.LAMBDA:
            self._visit_all(node.children, self._push(ScopeKind.FUNCTION, node, scope))
        elif k is NodeKind.IDENTIFIER:
            self._visit_identifier(node, scope)
        elif k is NodeKind.MEMBER_ACCESS:
            self._visit_member_access(node, scope)
        elif k is NodeKind.TYPE:
            pass
        else:
            self._visit_all(node.children, scope)

    # ── declarations ──

    def _visit_class(self, node: SyntaxNode, scope: Scope) -> None:
        self._declare(scope, node.name, SymbolKind.CLASS, node)
        class_scope = self._push(ScopeKind.CLASS, node, scope, node.name)
        if node.name:
            self._class_scopes.setdefault(node.name, class_scope)

        members = node.children
        for member in members:
            self._node_scope[id(member)] = class_scope
            if member.kind is NodeKind.FIELD:
                self._declare(class_scope, member.name, SymbolKind.FIELD, member, member.type_text,
                              is_const=member.has("const") or member.has("constexpr"))
            elif member.kind is NodeKind.FUNCTION:
                self._declare(class_scope, member.name, SymbolKind.METHOD, member, member.type_text,
                              is_const=member.has("const"))
            elif member.kind in (NodeKind.CLASS, NodeKind.TYPE_ALIAS):
                self._declare(class_scope, member.name, SymbolKind.CLASS, member, member.type_text)
            elif member.kind is NodeKind.ENUM:
                self._declare_enum(member, class_scope)

        for member in members:
            if member.kind is NodeKind.FIELD:
                initializer = member.child("initializer")
                if initializer is not None:
                    self._visit(initializer, class_scope)
                    self._record_write(self._declared.get(id(member)), member, definite=True)
            elif member.kind is NodeKind.FUNCTION:
                self._visit_function(member, class_scope, class_scope)
            elif member.kind is NodeKind.CLASS:
                self._visit(member, class_scope)
            elif member.kind is NodeKind.ENUM:
                for enumerator in member.children:
                    self._visit_all(enumerator.children, class_scope)

    def _declare_enum(self, node: SyntaxNode, scope: Scope) -> None:
        self._declare(scope, node.name, SymbolKind.CLASS, node)
        for enumerator in node.children:
            self._node_scope[id(enumerator)] = scope
            self._declare(scope, enumerator.name, SymbolKind.VARIABLE, enumerator, node.name, is_const=True)

    def _visit_enum(self, node: SyntaxNode, scope: Scope) -> None:
        self._declare_enum(node, scope)
        for enumerator in node.children:
            self._visit_all(enumerator.children, scope)

    def _visit_function_declaration(self, node: SyntaxNode, scope: Scope) -> None:
        class_scope = self.class_scope(node.owner) if node.owner else None
        if class_scope is not None:
            symbol = class_scope.lookup_local(node.name)
            if symbol is not None:
                symbol.declarations.append(node)
                if symbol.kind is SymbolKind.METHOD:
                    symbol.is_const = symbol.is_const and node.has("const")
                self._declared[id(node)] = symbol
            else:
                self._declare(class_scope, node.name, SymbolKind.METHOD, node, node.type_text,
                              is_const=node.has("const"))
            self._visit_function(node, class_scope, class_scope)
        else:
            self._declare(scope, node.name, SymbolKind.FUNCTION, node, node.type_text)
            self._visit_function(node, scope, None)

    def _visit_function(self, node: SyntaxNode, outer: Scope, class_scope: Optional[Scope]) -> None:
        self._function_class[id(node)] = class_scope
        self._node_scope[id(node)] = outer
        function_scope = self._push(ScopeKind.FUNCTION, node, outer, node.name)

        for param in node.children_with("parameter"):
            self._visit_parameter(param, function_scope, outer)

        for init in node.children_with("member_init"):
            self._node_scope[id(init)] = function_scope
            self._visit_all(init.children, function_scope)
            if class_scope is not None and init.name and not init.has("base_or_qualified"):
                field = class_scope.lookup_local(init.name)
                if field is not None and field.kind is SymbolKind.FIELD:
                    self._resolution[id(init)] = field
                    self._record_write(field, init, definite=True)

        body = node.child("body")
        if body is not None:
            self._visit(body, function_scope)
            self._cfgs[id(node)] = build_cfg(node)

    def _visit_parameter(self, node: SyntaxNode, scope: Scope, default_scope: Scope) -> None:
        self._node_scope[id(node)] = scope
        default = node.child("default")
        if default is not None:
            self._visit(default, default_scope)
        type_text = node.type_text or ""
        self._declare(scope, node.name, SymbolKind.PARAMETER, node, node.type_text,
                      is_const=type_text.startswith("const ") and not node.has("pointer"))

    def _visit_variable(self, node: SyntaxNode, scope: Scope) -> None:
        initializer = node.child("initializer")
        if initializer is not None:
            self._visit(initializer, scope)
        symbol = self._declare(scope, node.name, SymbolKind.VARIABLE, node, node.type_text,
                               is_const=node.has("const") or node.has("constexpr"))
        in_range_for = node.parent is not None and node.parent.kind is NodeKind.RANGE_FOR
        if symbol is not None and (initializer is not None or in_range_for):
            self._record_write(symbol, node, definite=True)

    # ── references ──

    def _visit_identifier(self, node: SyntaxNode, scope: Scope) -> None:
        symbol: Optional[Symbol] = None
        if node.owner:
            class_scope = self.class_scope(node.owner)
            if class_scope is not None:
                symbol = class_scope.lookup_local(node.name)
        elif node.name:
            symbol = scope.lookup(node.name)
        if symbol is None:
            return
        self._resolution[id(node)] = symbol
        self._record_access(symbol, node, scope)

    def _visit_member_access(self, node: SyntaxNode, scope: Scope) -> None:
        self._visit_all(node.children, scope)
        if not self._is_this_object(node) or not node.name:
            return
        class_scope = self._enclosing_class_scope(scope)
        if class_scope is None:
            return
        symbol = class_scope.lookup_local(node.name)
        if symbol is None:
            return
        self._resolution[id(node)] = symbol
        self._record_access(symbol, node, scope)

    @staticmethod
    def _is_this_object(node: SyntaxNode) -> bool:
        obj = strip_parens(node.child("object"))
        if obj is None:
            return False
        if node.operator == "->":
            return obj.kind is NodeKind.THIS
        return (obj.kind is NodeKind.UNARY_OP and obj.operator == "*"
                and strip_parens(obj.child("operand")) is not None
                and strip_parens(obj.child("operand")).kind is NodeKind.THIS)

    @staticmethod
    def _enclosing_class_scope(scope: Scope) -> Optional[Scope]:
        return scope.enclosing(ScopeKind.CLASS)

    def _record_access(self, symbol: Symbol, node: SyntaxNode, scope: Scope) -> None:
        read, write = access_of(node)
        if write == "possible":
            argument = call_argument_of(node)
            if argument is not None and not self._argument_may_be_written(*argument, scope):
                write = None
        statement = enclosing_statement(node)
        if read:
            symbol.reads.append(SymbolSite(node.span, node, statement))
        if write is not None:
            symbol.writes.append(SymbolSite(node.span, node, statement, definite=write == "definite"))

    # ── call arguments ──

    def _argument_may_be_written(self, call: SyntaxNode, position: int, scope: Scope) -> bool:
        """False only when every overload of a known callee takes that argument by value
        or through a const reference/pointer."""
        callee = self._callee_symbol(call, scope)
        if callee is None:
            return True
        matched = False
        for declaration in callee.declarations:
            if declaration.kind is not NodeKind.FUNCTION:
                continue
            params = declaration.children_with("parameter")
            if position >= len(params):
                continue
            matched = True
            if _parameter_may_write(params[position]):
                return True
        return not matched

    def _callee_symbol(self, call: SyntaxNode, scope: Scope) -> Optional[Symbol]:
        callee = strip_parens(call.child("callee"))
        if callee is None or not callee.name:
            return None
        symbol: Optional[Symbol] = None
        if callee.kind is NodeKind.IDENTIFIER:
            if callee.owner:
                class_scope = self.class_scope(callee.owner)
                symbol = class_scope.lookup_local(callee.name) if class_scope is not None else None
            else:
                symbol = scope.lookup(callee.name)
        elif callee.kind is NodeKind.MEMBER_ACCESS:
            class_scope = self._object_class_scope(callee, scope)
            symbol = class_scope.lookup_local(callee.name) if class_scope is not None else None
        if symbol is None or symbol.kind not in (SymbolKind.FUNCTION, SymbolKind.METHOD):
            return None
        return symbol

    def _object_class_scope(self, access: SyntaxNode, scope: Scope) -> Optional[Scope]:
        if self._is_this_object(access):
            return self._enclosing_class_scope(scope)
        obj = strip_parens(access.child("object"))
        if obj is None or obj.kind is not NodeKind.IDENTIFIER or not obj.name:
            return None
        symbol = scope.lookup(obj.name)
        if symbol is None or not symbol.declared_type:
            return None
        type_name = re.sub(r"\b(?:const|volatile)\b|[*&]", "", symbol.declared_type).strip()
        return self.class_scope(type_name) if type_name else None

    def _record_write(self, symbol: Optional[Symbol], node: SyntaxNode, definite: bool) -> None:
        if symbol is None or symbol is UNKNOWN_SYMBOL:
            return
        symbol.writes.append(SymbolSite(node.span, node, enclosing_statement(node), definite))


# ═══════════════════════════════════════════════════════════════════════
#  Access classification
# ═══════════════════════════════════════════════════════════════════════

def access_of(node: SyntaxNode) -> Tuple[bool, Optional[str]]:
    """Classify a reference as ``(is_read, write)``.

    ``write`` is ``None``, ``"definite"`` or ``"possible"``.  The reference
    is followed up through member/subscript/dereference paths first, so
    ``p->x = 1`` is a possible write of ``p``.
    """
    current = node
    through_path = False
    while True:
        parent = current.parent
        role = current.role
        if parent is None:
            return True, None
        pk = parent.kind
        if pk is NodeKind.PARENTHESIZED:
            current = parent
            continue
        if pk is NodeKind.MEMBER_ACCESS and role == "object":
            grand = parent.parent
            if grand is not None and grand.kind is NodeKind.CALL and parent.role == "callee":
                return True, "possible"
            current = parent
            through_path = True
            continue
        if pk is NodeKind.SUBSCRIPT and role == "object":
            current = parent
            through_path = True
            continue
        if pk is NodeKind.UNARY_OP and parent.operator == "*":
            current = parent
            through_path = True
            continue
        break

    if pk is NodeKind.ASSIGNMENT and role == "left":
        if through_path:
            return True, "possible"
        return parent.operator != "=", "definite"
    if pk in (NodeKind.UNARY_OP, NodeKind.POSTFIX_OP) and parent.operator in ("++", "--"):
        return True, "possible" if through_path else "definite"
    if pk is NodeKind.UNARY_OP and parent.operator == "&":
        return True, "possible"
    if pk is NodeKind.CALL and role == "argument":
        return True, "possible"
    if pk in (NodeKind.NEW, NodeKind.INIT_LIST) and role in ("argument", "element") \
            and (pk is NodeKind.NEW or parent.has("ctor_args")):
        return True, "possible"
    return True, None


def call_argument_of(node: SyntaxNode) -> Optional[Tuple[SyntaxNode, int]]:
    """``(call, position)`` when ``node`` is passed as a call argument,
    directly or through a member/subscript/dereference path."""
    current = node
    while current.parent is not None:
        parent = current.parent
        role = current.role
        if parent.kind is NodeKind.PARENTHESIZED \
                or (parent.kind is NodeKind.SUBSCRIPT and role == "object") \
                or (parent.kind is NodeKind.UNARY_OP and parent.operator == "*"):
            current = parent
            continue
        if parent.kind is NodeKind.MEMBER_ACCESS and role == "object":
            if parent.role == "callee":
                return None
            current = parent
            continue
        if parent.kind is NodeKind.CALL and role == "argument":
            arguments = parent.children_with("argument")
            return parent, next(i for i, a in enumerate(arguments) if a is current)
        return None
    return None


def _parameter_may_write(param: SyntaxNode) -> bool:
    type_text = param.type_text or ""
    if not (param.has("reference") or param.has("pointer") or "[" in type_text):
        return False
    return not type_text.startswith("const ")
