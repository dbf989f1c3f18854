"""
Checks that need the Semantic Index beyond name lookup: unused locals,
unreachable statements (from the CFG) and signed counters that are never
negative.
"""

import logging
import re
from typing import List, Optional, Set

from idiomcheck.diagnostics import Diagnostic, Severity
from idiomcheck.rule_engine import CheckContext, RuleCheck, register_check
from idiomcheck.semantic_index import Symbol, SymbolKind, SymbolSite
from idiomcheck.syntax_helpers import literal_number, strip_parens
from idiomcheck.syntax_model import NodeKind, SyntaxNode

logger = logging.getLogger(__name__)

_EXIT_KINDS = {NodeKind.RETURN, NodeKind.THROW, NodeKind.BREAK, NodeKind.CONTINUE, NodeKind.GOTO}

_PRIMITIVE_TYPE_WORDS = {
    "bool", "char", "wchar_t", "char8_t", "char16_t", "char32_t", "short", "int", "long",
    "signed", "unsigned", "float", "double", "auto", "size_t", "std::size_t", "ptrdiff_t",
    "std::ptrdiff_t",
}

_SIGNED_TYPES = {
    "int", "signed", "signed int", "short", "short int", "signed short", "long", "long int",
    "signed long", "long long", "long long int", "signed long long", "ptrdiff_t",
    "std::ptrdiff_t", "ssize_t", "intptr_t", "std::intptr_t",
}
_SIGNED_FIXED = re.compile(r"^(std::)?int(8|16|32|64)_t$")
_UNSIGNED_FIXED = re.compile(r"^(std::)?(u?int(8|16|32|64)_t|size_t|uintptr_t)$")

_SIZE_METHODS = {"size", "length", "count", "capacity"}
_RELATIONAL = {"<", "<=", ">", ">=", "==", "!="}
_NON_NEGATIVE_UPDATES = {"=", "+=", "*=", "/=", "%=", "&=", "|=", ">>="}


def _bare_type(type_text: Optional[str]) -> str:
    words = [w for w in (type_text or "").split() if w not in ("const", "constexpr", "static",
                                                                "volatile", "register")]
    return " ".join(words)


def _is_primitive(type_text: Optional[str]) -> bool:
    words = _bare_type(type_text).replace("*", " ").replace("&", " ").split()
    return bool(words) and all(w in _PRIMITIVE_TYPE_WORDS for w in words)


def _is_unsigned_type(type_text: Optional[str]) -> bool:
    bare = _bare_type(type_text)
    return bare.startswith("unsigned") or bool(_UNSIGNED_FIXED.match(bare))


def _outer(node: SyntaxNode) -> SyntaxNode:
    """``node`` widened over any enclosing parentheses."""
    while node.parent is not None and node.parent.kind is NodeKind.PARENTHESIZED:
        node = node.parent
    return node


# ═══════════════════════════════════════════════════════════════════════
#  UnusedVariable
# ═══════════════════════════════════════════════════════════════════════

@register_check
class UnusedVariableCheck(RuleCheck):
    rule_id = "UnusedVariable"

    def run(self, ctx: CheckContext) -> List[Diagnostic]:
        found = []
        for symbol in ctx.index.local_variables():
            if symbol.reads or not symbol.name:
                continue
            declaration = symbol.declaration
            if declaration is None or declaration.kind is not NodeKind.VARIABLE:
                continue
            if self._exempt(declaration):
                continue
            found.append(self.report(ctx, declaration, f"Unused variable '{symbol.name}'"))
        return found

    @staticmethod
    def _exempt(declaration: SyntaxNode) -> bool:
        if declaration.has("enumerator") or declaration.has("maybe_unused"):
            return True
        if declaration.name.startswith("[") or declaration.name == "_":
            return True
        parent = declaration.parent
        if parent is not None and (parent.kind is NodeKind.RANGE_FOR or declaration.role == "condition"):
            return True
        initializer = declaration.child("initializer")
        if initializer is not None and initializer.kind is NodeKind.INIT_LIST \
                and not _is_primitive(declaration.type_text):
            # RAII guard: the constructor does the work
            return bool(initializer.children) or initializer.has("ctor_args")
        return False


# ═══════════════════════════════════════════════════════════════════════
#  UnreachableCode
# ═══════════════════════════════════════════════════════════════════════

@register_check
class UnreachableCodeCheck(RuleCheck):
    rule_id = "UnreachableCode"

    def run(self, ctx: CheckContext) -> List[Diagnostic]:
        found = []
        for function in ctx.index.functions():
            cfg = ctx.index.cfg(function)
            if cfg is None:
                continue
            dead = [s for s in cfg.unreachable_statements() if s.kind is not NodeKind.EMPTY]
            if not dead:
                continue
            dead_ids = {id(s) for s in dead}
            topmost = [s for s in dead
                       if not any(id(a) in dead_ids for a in s.ancestors())]
            found.extend(self._report_runs(ctx, topmost))
        return found

    def _report_runs(self, ctx: CheckContext, statements: List[SyntaxNode]) -> List[Diagnostic]:
        members = {id(s) for s in statements}
        parents = []
        seen: Set[int] = set()
        for stmt in statements:
            parent = stmt.parent
            if parent is not None and id(parent) not in seen:
                seen.add(id(parent))
                parents.append(parent)

        found = []
        for parent in parents:
            run: List[SyntaxNode] = []
            previous: Optional[SyntaxNode] = None
            before_run: Optional[SyntaxNode] = None
            for child in parent.children:
                if id(child) in members:
                    if not run:
                        before_run = previous
                    run.append(child)
                    continue
                if child.kind is NodeKind.EMPTY and run:
                    continue
                if run:
                    found.append(self._report_run(ctx, run, before_run))
                    run = []
                if child.kind is not NodeKind.EMPTY:
                    previous = child
            if run:
                found.append(self._report_run(ctx, run, before_run))
        return found

    def _report_run(self, ctx: CheckContext, run: List[SyntaxNode],
                    before: Optional[SyntaxNode]) -> Diagnostic:
        span = run[0].span.cover(run[-1].span)
        if before is not None and before.kind in _EXIT_KINDS:
            message = f"Unreachable code after '{before.kind.value}' statement"
            return self.report(ctx, span, message, related=[before])
        return self.report(ctx, span, "Unreachable code")


# ═══════════════════════════════════════════════════════════════════════
#  UnsignedForNonNegative
# ═══════════════════════════════════════════════════════════════════════

@register_check
class UnsignedForNonNegativeCheck(RuleCheck):
    """Signed locals that provably never go negative and index or size-compare.

    Parameters are not candidates: their incoming value is unknown.
    """

    rule_id = "UnsignedForNonNegative"
    default_severity = Severity.INFO

    def run(self, ctx: CheckContext) -> List[Diagnostic]:
        found = []
        for symbol in ctx.index.local_variables():
            declaration = symbol.declaration
            if declaration is None or not self._is_candidate(declaration):
                continue
            if self._never_negative(ctx, symbol):
                found.append(self.report(
                    ctx, declaration,
                    f"'{symbol.name}' is never negative: consider an unsigned type such as 'size_t'",
                ))
        return found

    @staticmethod
    def _is_candidate(declaration: SyntaxNode) -> bool:
        if declaration.kind is not NodeKind.VARIABLE:
            return False
        if any(declaration.has(q) for q in ("enumerator", "pointer", "reference", "array",
                                            "const", "constexpr")):
            return False
        if declaration.parent is not None and declaration.parent.kind is NodeKind.RANGE_FOR:
            return False
        bare = _bare_type(declaration.type_text)
        return bare in _SIGNED_TYPES or bool(_SIGNED_FIXED.match(bare))

    def _never_negative(self, ctx: CheckContext, symbol: Symbol) -> bool:
        if not symbol.writes or symbol.possible_writes:
            return False
        for site in symbol.writes:
            if not self._write_keeps_sign(ctx, symbol, site):
                return False

        evidence = False
        for site in symbol.reads:
            use = _outer(site.node)
            parent = use.parent
            if parent is None:
                continue
            if parent.kind is NodeKind.SUBSCRIPT and use.role == "index":
                evidence = True
            elif parent.kind is NodeKind.BINARY_OP and parent.operator in _RELATIONAL:
                other = parent.child("right" if use.role == "left" else "left")
                if other is None or not self._non_negative(ctx, other, symbol):
                    return False
                if self._is_size(ctx, other):
                    evidence = True
            elif parent.kind is NodeKind.UNARY_OP and parent.operator == "-":
                return False
        return evidence

    def _write_keeps_sign(self, ctx: CheckContext, symbol: Symbol, site: SymbolSite) -> bool:
        node = site.node
        if node.kind is NodeKind.VARIABLE:
            initializer = node.child("initializer")
            if initializer is not None and initializer.kind is NodeKind.INIT_LIST:
                elements = initializer.children
                return len(elements) == 1 and self._non_negative(ctx, elements[0], symbol)
            return initializer is not None and self._non_negative(ctx, initializer, symbol)
        use = _outer(node)
        parent = use.parent
        if parent is None:
            return False
        if parent.kind is NodeKind.ASSIGNMENT and use.role == "left":
            right = parent.child("right")
            return parent.operator in _NON_NEGATIVE_UPDATES and right is not None \
                and self._non_negative(ctx, right, symbol)
        if parent.kind in (NodeKind.UNARY_OP, NodeKind.POSTFIX_OP):
            return parent.operator == "++"
        return False

    def _non_negative(self, ctx: CheckContext, expr: SyntaxNode, symbol: Symbol) -> bool:
        expr = strip_parens(expr)
        if expr is None:
            return False
        k = expr.kind
        if k is NodeKind.LITERAL:
            if expr.literal_kind == "number":
                value = literal_number(expr)
                return value is not None and value >= 0
            return expr.literal_kind == "char"
        if k is NodeKind.UNARY_OP and expr.operator == "-":
            value = literal_number(expr)
            return value is not None and value >= 0
        if k is NodeKind.SIZEOF:
            return True
        if k is NodeKind.IDENTIFIER:
            resolved = ctx.index.resolve(expr)
            if resolved is symbol:
                return True
            if resolved.is_unknown or resolved.kind not in (SymbolKind.VARIABLE, SymbolKind.PARAMETER,
                                                            SymbolKind.FIELD):
                return False
            return _is_unsigned_type(resolved.declared_type)
        if k is NodeKind.CALL or k is NodeKind.CAST:
            return self._is_size(ctx, expr)
        if k is NodeKind.BINARY_OP:
            left, right = expr.child("left"), expr.child("right")
            if left is None or right is None:
                return False
            if expr.operator in ("+", "*", "/", "%", "|", ">>"):
                return self._non_negative(ctx, left, symbol) and self._non_negative(ctx, right, symbol)
            if expr.operator == "&":
                return self._non_negative(ctx, left, symbol) or self._non_negative(ctx, right, symbol)
            return False
        if k is NodeKind.CONDITIONAL:
            then, other = expr.child("then"), expr.child("else")
            return then is not None and other is not None and \
                self._non_negative(ctx, then, symbol) and self._non_negative(ctx, other, symbol)
        return False

    @staticmethod
    def _is_size(ctx: CheckContext, expr: SyntaxNode) -> bool:
        expr = strip_parens(expr)
        if expr is None:
            return False
        if expr.kind is NodeKind.SIZEOF:
            return True
        if expr.kind is NodeKind.CAST:
            return _is_unsigned_type(expr.type_text)
        if expr.kind is NodeKind.CALL:
            callee = strip_parens(expr.child("callee"))
            return callee is not None and callee.name in _SIZE_METHODS | {"strlen", "wcslen"} \
                and (callee.kind is NodeKind.MEMBER_ACCESS or callee.name in ("strlen", "wcslen"))
        if expr.kind is NodeKind.IDENTIFIER:
            resolved = ctx.index.resolve(expr)
            return not resolved.is_unknown and _is_unsigned_type(resolved.declared_type)
        return False
