"""
Class and iterator idioms: constructors, const methods, special members
and the operator families that should delegate to each other.
"""

import logging
import re
from typing import Dict, List, Optional, Set

from idiomcheck.diagnostics import Diagnostic
from idiomcheck.rule_engine import CheckContext, RuleCheck, register_check
from idiomcheck.semantic_index import Scope, ScopeKind, SemanticIndex, Symbol, SymbolKind
from idiomcheck.syntax_helpers import significant_statements, single_statement, strip_parens
from idiomcheck.syntax_model import NodeKind, SyntaxNode

logger = logging.getLogger(__name__)

# Any of these on a method (or one of its redeclarations) rules out a const suggestion.
_NOT_CONST_CANDIDATE = {
    "static", "virtual", "override", "final", "constructor", "destructor", "default", "delete",
    "const", "conversion", "friend",
}


def _class_name(scope: Scope) -> str:
    return re.sub(r"<.*>", "", scope.name or "").strip()


def _own_field(ctx: CheckContext, node: Optional[SyntaxNode], class_scope: Scope) -> Optional[Symbol]:
    """Field of ``class_scope`` named by ``node`` (``f`` or ``this->f``)."""
    node = strip_parens(node)
    if node is None or node.kind not in (NodeKind.IDENTIFIER, NodeKind.MEMBER_ACCESS):
        return None
    symbol = ctx.index.resolve(node)
    if symbol.kind is SymbolKind.FIELD and symbol.scope is class_scope:
        return symbol
    return None


def _instance_fields(class_scope: Scope) -> List[Symbol]:
    return [f for f in class_scope.symbols.values()
            if f.kind is SymbolKind.FIELD and not any(d.has("static") for d in f.declarations)]


def _is_this_deref(node: Optional[SyntaxNode], depth: int) -> bool:
    """``*this`` for depth 1, ``**this`` for depth 2."""
    node = strip_parens(node)
    for _ in range(depth):
        if node is None or node.kind is not NodeKind.UNARY_OP or node.operator != "*":
            return False
        node = strip_parens(node.child("operand"))
    return node is not None and node.kind is NodeKind.THIS


def _class_of(fn: SyntaxNode, ctx: CheckContext) -> Optional[Scope]:
    scope = ctx.index.class_scope_of_function(fn)
    if scope is None or scope.node is None:
        return None
    return scope


# ═══════════════════════════════════════════════════════════════════════
#  Constructors
# ═══════════════════════════════════════════════════════════════════════

@register_check
class PreferMemberInitListCheck(RuleCheck):
    rule_id = "PreferMemberInitList"

    def run(self, ctx: CheckContext) -> List[Diagnostic]:
        found = []
        for fn in ctx.index.functions():
            if fn.has("constructor"):
                found.extend(self._check_constructor(fn, ctx))
        return found

    def _check_constructor(self, fn: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        class_scope = _class_of(fn, ctx)
        if class_scope is None:
            return []
        initialised = {init.name for init in fn.children_with("member_init")}
        body = fn.child("body")
        found = []
        reported: Set[int] = set()
        for stmt in significant_statements(body):
            if stmt.kind is not NodeKind.EXPRESSION_STMT:
                break
            assignment = strip_parens(stmt.child("expression"))
            if assignment is None or assignment.kind is not NodeKind.ASSIGNMENT or assignment.operator != "=":
                break
            field = _own_field(ctx, assignment.child("left"), class_scope)
            right = assignment.child("right")
            if field is None or right is None:
                break
            if id(field) in reported or field.name in initialised:
                continue
            if field.declaration is not None and field.declaration.has("array"):
                continue
            if self._used_before(field, fn, stmt, right):
                continue
            reported.add(id(field))
            fix = f"{field.name}({ctx.text(right)})"
            found.append(self.report(
                ctx, stmt,
                f"Member '{field.name}' is assigned in the constructor body; "
                f"initialise it in the member initializer list",
                related=[field.declaration] if field.declaration is not None else [],
                suggested_fix=fix,
            ))
        return found

    @staticmethod
    def _used_before(field: Symbol, fn: SyntaxNode, stmt: SyntaxNode, right: SyntaxNode) -> bool:
        for site in field.reads:
            if not site.node.is_descendant_of(fn):
                continue
            if site.span.start_offset < stmt.span.start_offset or site.node.is_descendant_of(right):
                return True
        return False


@register_check
class RedundantThisQualifierCheck(RuleCheck):
    rule_id = "RedundantThisQualifier"

    def visit_expression(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        if node.kind is not NodeKind.MEMBER_ACCESS or node.operator != "->" or not node.name:
            return []
        obj = strip_parens(node.child("object"))
        if obj is None or obj.kind is not NodeKind.THIS:
            return []
        symbol = ctx.index.resolve(node)
        if symbol.kind not in (SymbolKind.FIELD, SymbolKind.METHOD):
            return []

        scope = ctx.index.scope_at(node)
        while scope is not None and scope.kind is not ScopeKind.CLASS:
            if scope.kind in (ScopeKind.FUNCTION, ScopeKind.BLOCK) and scope.lookup_local(node.name) is not None:
                return []
            scope = scope.parent
        if scope is None or scope is not symbol.scope:
            return []
        return [self.report(ctx, node, f"Redundant 'this->' qualifier on '{node.name}'",
                            suggested_fix=node.name)]


# ═══════════════════════════════════════════════════════════════════════
#  Const correctness
# ═══════════════════════════════════════════════════════════════════════

@register_check
class MissingConstQualifierCheck(RuleCheck):
    rule_id = "MissingConstQualifier"

    def run(self, ctx: CheckContext) -> List[Diagnostic]:
        found = []
        for fn in ctx.index.functions():
            class_scope = _class_of(fn, ctx)
            if class_scope is None:
                continue
            symbol = ctx.index.symbol_for_declaration(fn)
            if symbol is None or symbol.kind is not SymbolKind.METHOD:
                continue
            if any(q in decl.qualifiers for decl in symbol.declarations for q in _NOT_CONST_CANDIDATE):
                continue
            if fn.name and fn.name.startswith("operator") and fn.name.endswith("="):
                if fn.name not in ("operator==", "operator!=", "operator<=", "operator>="):
                    continue
            body = fn.child("body")
            if not significant_statements(body):
                continue
            if self._returns_mutable_handle(fn):
                continue
            if self._writes_fields(class_scope, body):
                continue
            if self._calls_mutating(ctx, class_scope, body):
                continue
            if self._leaks_this(body):
                continue
            found.append(self.report(
                ctx, fn,
                f"Method '{fn.name}' does not modify the object; declare it 'const'",
            ))
        return found

    @staticmethod
    def _returns_mutable_handle(fn: SyntaxNode) -> bool:
        type_text = fn.type_text or ""
        if not (type_text.endswith("&") or type_text.endswith("*")):
            return False
        return not (type_text.startswith("const ") or fn.has("const_return"))

    @staticmethod
    def _writes_fields(class_scope: Scope, body: SyntaxNode) -> bool:
        for field in SemanticIndex.fields_of(class_scope):
            if any(site.node.is_descendant_of(body) for site in field.writes):
                return True
        return False

    @staticmethod
    def _calls_mutating(ctx: CheckContext, class_scope: Scope, body: SyntaxNode) -> bool:
        for node in body.walk():
            if node.kind is not NodeKind.CALL:
                continue
            callee = strip_parens(node.child("callee"))
            if callee is None:
                return True
            if callee.kind is NodeKind.IDENTIFIER:
                symbol = ctx.index.resolve(callee)
                if symbol.is_unknown and not callee.owner:
                    return True
                if symbol.kind is SymbolKind.METHOD and symbol.scope is class_scope and not symbol.is_const:
                    return True
            elif callee.kind is NodeKind.MEMBER_ACCESS:
                symbol = ctx.index.resolve(callee)
                if symbol.kind is SymbolKind.METHOD and not symbol.is_const:
                    return True
        return False

    @staticmethod
    def _leaks_this(body: SyntaxNode) -> bool:
        for node in body.walk():
            if node.kind is not NodeKind.THIS:
                continue
            use = node
            while use.parent is not None and use.parent.kind is NodeKind.PARENTHESIZED:
                use = use.parent
            parent = use.parent
            if parent is not None and parent.kind is NodeKind.UNARY_OP and parent.operator == "*":
                use = parent
                while use.parent is not None and use.parent.kind is NodeKind.PARENTHESIZED:
                    use = use.parent
                parent = use.parent
            if parent is None or parent.kind is not NodeKind.MEMBER_ACCESS or use.role != "object":
                return True
        return False


# ═══════════════════════════════════════════════════════════════════════
#  Operator families
# ═══════════════════════════════════════════════════════════════════════

@register_check
class InequalityNotDelegatingCheck(RuleCheck):
    rule_id = "InequalityNotDelegating"

    def visit_declaration(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        if node.kind is not NodeKind.FUNCTION or node.name != "operator!=":
            return []
        body = node.child("body")
        if body is None or node.has("default") or node.has("delete"):
            return []
        if self._delegates(body):
            return []

        params = [p.name or "other" for p in node.children_with("parameter")]
        if len(params) == 1:
            fix = f"return !(*this == {params[0]});"
        elif len(params) == 2:
            fix = f"return !({params[0]} == {params[1]});"
        else:
            fix = None
        return [self.report(ctx, node, "'operator!=' should be implemented as the negation of 'operator=='",
                            suggested_fix=fix)]

    @staticmethod
    def _delegates(body: SyntaxNode) -> bool:
        stmt = single_statement(body)
        if stmt is None or stmt.kind is not NodeKind.RETURN:
            return False
        value = strip_parens(stmt.child("value"))
        if value is None or value.kind is not NodeKind.UNARY_OP or value.operator not in ("!", "not"):
            return False
        inner = strip_parens(value.child("operand"))
        if inner is None:
            return False
        if inner.kind is NodeKind.BINARY_OP and inner.operator == "==":
            return True
        if inner.kind is NodeKind.CALL:
            callee = strip_parens(inner.child("callee"))
            return callee is not None and callee.name == "operator=="
        return False


@register_check
class ArrowNotDelegatingCheck(RuleCheck):
    rule_id = "ArrowNotDelegating"

    def visit_declaration(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        if node.kind is not NodeKind.FUNCTION or node.name != "operator->":
            return []
        body = node.child("body")
        if body is None:
            return []
        class_scope = _class_of(node, ctx)
        if class_scope is None:
            return []
        deref = class_scope.lookup_local("operator*")
        if deref is None or deref.kind is not SymbolKind.METHOD:
            return []
        if self._delegates(body):
            return []
        return [self.report(ctx, node, "'operator->' should return the address of 'operator*' ('&**this')",
                            suggested_fix="return &**this;")]

    @classmethod
    def _delegates(cls, body: SyntaxNode) -> bool:
        stmt = single_statement(body)
        if stmt is None or stmt.kind is not NodeKind.RETURN:
            return False
        value = strip_parens(stmt.child("value"))
        if value is None:
            return False
        if value.kind is NodeKind.UNARY_OP and value.operator == "&":
            return cls._is_deref_of_self(value.child("operand"))
        if value.kind is NodeKind.CALL:
            callee = strip_parens(value.child("callee"))
            args = value.children_with("argument")
            return callee is not None and callee.name == "addressof" and len(args) == 1 \
                and cls._is_deref_of_self(args[0])
        return False

    @staticmethod
    def _is_deref_of_self(node: Optional[SyntaxNode]) -> bool:
        node = strip_parens(node)
        if node is None:
            return False
        if _is_this_deref(node, 2):
            return True
        if node.kind is NodeKind.CALL and not node.children_with("argument"):
            callee = strip_parens(node.child("callee"))
            if callee is None or callee.name != "operator*":
                return False
            if callee.kind is NodeKind.IDENTIFIER:
                return True
            if callee.kind is not NodeKind.MEMBER_ACCESS:
                return False
            obj = strip_parens(callee.child("object"))
            return obj is not None and (obj.kind is NodeKind.THIS or _is_this_deref(obj, 1))
        return False


@register_check
class IteratorAliasUsageCheck(RuleCheck):
    rule_id = "IteratorAliasUsage"

    def visit_declaration(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        if node.kind is not NodeKind.CLASS:
            return []
        members = node.children_with("member")
        operators = {m.name for m in members if m.kind is NodeKind.FUNCTION and m.name}
        if "operator*" not in operators or "operator++" not in operators:
            return []
        if "operator==" not in operators and "operator!=" not in operators:
            return []

        aliases: Dict[str, SyntaxNode] = {}
        found = []
        for member in members:
            if member.kind is NodeKind.TYPE_ALIAS and member.type_text:
                aliases.setdefault(member.type_text, member)
            elif member.kind is NodeKind.FUNCTION and member.name in ("operator*", "operator->"):
                alias = aliases.get(member.type_text or "")
                if alias is None or alias.name == member.type_text:
                    continue
                found.append(self.report(
                    ctx, member.child("return_type") or member,
                    f"'{member.name}' spells '{member.type_text}'; use the member alias '{alias.name}'",
                    related=[alias], suggested_fix=alias.name,
                ))
        return found


# ═══════════════════════════════════════════════════════════════════════
#  Special members
# ═══════════════════════════════════════════════════════════════════════

@register_check
class DefaultableSpecialMemberCheck(RuleCheck):
    rule_id = "DefaultableSpecialMember"

    def run(self, ctx: CheckContext) -> List[Diagnostic]:
        found = []
        for fn in ctx.index.functions():
            if fn.has("default") or fn.has("delete"):
                continue
            class_scope = _class_of(fn, ctx)
            if class_scope is None:
                continue
            what = self._defaultable(ctx, fn, class_scope)
            if what is not None:
                found.append(self.report(ctx, fn, f"{what} can be declared '= default'",
                                         suggested_fix=self._fix(fn, class_scope)))
        return found

    def _defaultable(self, ctx: CheckContext, fn: SyntaxNode, class_scope: Scope) -> Optional[str]:
        params = fn.children_with("parameter")
        inits = fn.children_with("member_init")
        empty_body = not significant_statements(fn.child("body"))
        class_node = class_scope.node
        has_bases = class_node.has("has_bases")
        name = _class_name(class_scope)

        if fn.has("destructor"):
            return "Empty destructor" if empty_body else None
        if fn.has("constructor"):
            if not params:
                return "Empty default constructor" if empty_body and not inits else None
            if len(params) != 1 or not empty_body or has_bases:
                return None
            param = params[0]
            if param.type_text == f"const {name}&":
                return "Member-wise copy constructor" if self._memberwise_inits(
                    inits, param, class_scope, moving=False) else None
            if param.type_text == f"{name}&&":
                return "Member-wise move constructor" if self._memberwise_inits(
                    inits, param, class_scope, moving=True) else None
            return None
        if fn.name == "operator=" and len(params) == 1 and not has_bases \
                and params[0].type_text == f"const {name}&" and fn.type_text == f"{name}&":
            if self._memberwise_assignment(ctx, fn, params[0], class_scope):
                return "Member-wise copy assignment"
        return None

    @staticmethod
    def _member_of_param(node: Optional[SyntaxNode], param: SyntaxNode) -> Optional[str]:
        node = strip_parens(node)
        if node is None or node.kind is not NodeKind.MEMBER_ACCESS or node.operator != ".":
            return None
        obj = strip_parens(node.child("object"))
        if obj is None or obj.kind is not NodeKind.IDENTIFIER or obj.name != param.name:
            return None
        return node.name

    def _memberwise_inits(self, inits: List[SyntaxNode], param: SyntaxNode, class_scope: Scope,
                          moving: bool) -> bool:
        copied: Set[str] = set()
        for init in inits:
            args = init.children_with("argument")
            if init.has("base_or_qualified") or len(args) != 1:
                return False
            source = args[0]
            if moving:
                call = strip_parens(source)
                if call is None or call.kind is not NodeKind.CALL or call.name != "move":
                    return False
                call_args = call.children_with("argument")
                if len(call_args) != 1:
                    return False
                source = call_args[0]
            if self._member_of_param(source, param) != init.name:
                return False
            copied.add(init.name)
        return copied == {f.name for f in _instance_fields(class_scope)}

    def _memberwise_assignment(self, ctx: CheckContext, fn: SyntaxNode, param: SyntaxNode,
                               class_scope: Scope) -> bool:
        statements = significant_statements(fn.child("body"))
        if not statements:
            return False
        last = statements[-1]
        if last.kind is not NodeKind.RETURN or not _is_this_deref(last.child("value"), 1):
            return False
        assigned: Set[str] = set()
        for stmt in statements[:-1]:
            if stmt.kind is not NodeKind.EXPRESSION_STMT:
                return False
            assignment = strip_parens(stmt.child("expression"))
            if assignment is None or assignment.kind is not NodeKind.ASSIGNMENT or assignment.operator != "=":
                return False
            field = _own_field(ctx, assignment.child("left"), class_scope)
            if field is None or self._member_of_param(assignment.child("right"), param) != field.name:
                return False
            assigned.add(field.name)
        return assigned == {f.name for f in _instance_fields(class_scope)}

    @staticmethod
    def _fix(fn: SyntaxNode, class_scope: Scope) -> str:
        name = _class_name(class_scope)
        params = ", ".join(p.type_text or "" for p in fn.children_with("parameter"))
        if fn.has("destructor"):
            return f"~{name}() = default;"
        if fn.has("constructor"):
            return f"{name}({params}) = default;"
        return f"{name}& operator=({params}) = default;"
