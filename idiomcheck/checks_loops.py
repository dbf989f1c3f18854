"""
Loop-form idioms: pre-increment, redundant and hoistable loop conditions,
while-loops that want to be for-loops.
"""

import logging
from typing import List, Optional, Set

from idiomcheck.diagnostics import Diagnostic
from idiomcheck.rule_engine import CheckContext, RuleCheck, register_check
from idiomcheck.semantic_index import Symbol, SymbolKind
from idiomcheck.syntax_helpers import (
    has_side_effects, identifiers_in, is_value_discarded, literal_number,
    significant_statements, strip_parens, structurally_equal,
)
from idiomcheck.syntax_model import LOOP_KINDS, NodeKind, SyntaxNode

logger = logging.getLogger(__name__)

_VARIABLE_KINDS = {SymbolKind.VARIABLE, SymbolKind.PARAMETER, SymbolKind.FIELD}


def _conjuncts(expr: Optional[SyntaxNode]) -> List[SyntaxNode]:
    """Split ``a && b && c`` into its operands."""
    expr = strip_parens(expr)
    if expr is None:
        return []
    if expr.kind is NodeKind.BINARY_OP and expr.operator == "&&":
        return _conjuncts(expr.child("left")) + _conjuncts(expr.child("right"))
    return [expr]


def _variables_of(ctx: CheckContext, expr: Optional[SyntaxNode]) -> Optional[List[Symbol]]:
    """Resolved variables referenced by ``expr``; None if any identifier is unresolved."""
    symbols: List[Symbol] = []
    for ident in identifiers_in(expr):
        symbol = ctx.index.resolve(ident)
        if symbol.is_unknown:
            return None
        if symbol.kind in _VARIABLE_KINDS and symbol not in symbols:
            symbols.append(symbol)
    return symbols


def _written_within(symbol: Symbol, region: SyntaxNode) -> bool:
    return any(site.node is region or site.node.is_descendant_of(region) for site in symbol.writes)


def _contains_call(node: Optional[SyntaxNode]) -> bool:
    return node is not None and any(n.kind is NodeKind.CALL for n in node.walk())


@register_check
class PreferPreIncrementCheck(RuleCheck):
    rule_id = "PreferPreIncrement"

    def visit_expression(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        if node.kind is NodeKind.POSTFIX_OP and node.operator in ("++", "--"):
            operand = node.child("operand")
        elif node.kind is NodeKind.ASSIGNMENT and node.operator in ("+=", "-=") \
                and literal_number(node.child("right")) == 1:
            operand = node.child("left")
        else:
            return []
        if operand is None or not is_value_discarded(node):
            return []

        op = "++" if node.operator in ("++", "+=") else "--"
        target = ctx.text(operand)
        fix = f"{op}{target}"
        return [self.report(ctx, node, f"Prefer pre-increment: use '{fix}' instead of "
                                       f"'{ctx.text(node)}'", suggested_fix=fix)]


@register_check
class RedundantLoopConditionCheck(RuleCheck):
    rule_id = "RedundantLoopCondition"

    def visit_statement(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        if node.kind is not NodeKind.FOR:
            return []
        condition = strip_parens(node.child("condition"))
        body = node.child("body")
        if condition is None or body is None:
            return []

        variables = _variables_of(ctx, condition)
        if not variables:
            return []
        if any(_written_within(v, body) for v in variables):
            return []
        if any(v.kind is SymbolKind.FIELD for v in variables) and _contains_call(body):
            return []

        found = []
        for inner in body.walk():
            if inner.kind is not NodeKind.IF or inner.enclosing(NodeKind.LAMBDA) is not None:
                continue
            inner_condition = inner.child("condition")
            candidates = [strip_parens(inner_condition)] + _conjuncts(inner_condition)
            repeated = next((c for c in candidates if c is not None and structurally_equal(c, condition)), None)
            if repeated is not None:
                found.append(self.report(
                    ctx, repeated,
                    f"Conditional redundant with loop condition '{ctx.text(condition)}'",
                    related=[condition],
                ))
        return found


@register_check
class PreferForLoopCheck(RuleCheck):
    rule_id = "PreferForLoop"

    def visit_statement(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        if node.kind is not NodeKind.WHILE or node.child("init") is not None:
            return []
        parent = node.parent
        if parent is None or parent.kind is not NodeKind.COMPOUND:
            return []
        siblings = [s for s in parent.children if s.kind is not NodeKind.EMPTY]
        position = next(i for i, s in enumerate(siblings) if s is node)
        if position == 0:
            return []
        previous = siblings[position - 1]
        if previous.kind is not NodeKind.DECLARATION_STMT or len(previous.children) != 1:
            return []
        declaration = previous.children[0]
        if declaration.kind is not NodeKind.VARIABLE:
            return []

        counter = ctx.index.symbol_for_declaration(declaration)
        if counter is None:
            return []
        condition_vars = _variables_of(ctx, node.child("condition")) or []
        if counter not in condition_vars:
            return []
        body = node.child("body")
        if body is None or not any(site.definite and site.node.is_descendant_of(body)
                                   for site in counter.writes):
            return []
        for site in (*counter.reads, *counter.writes):
            if site.node is declaration or site.node.is_descendant_of(node) \
                    or site.node.is_descendant_of(previous):
                continue
            return []

        return [self.report(
            ctx, node,
            f"Prefer a for loop: '{counter.name}' is declared before the while loop, "
            f"updated in its body and not used afterwards",
            related=[previous],
            suggested_fix=self._suggestion(ctx, previous, node, counter),
        )]

    @staticmethod
    def _suggestion(ctx: CheckContext, declaration: SyntaxNode, loop: SyntaxNode,
                    counter: Symbol) -> Optional[str]:
        statements = significant_statements(loop.child("body"))
        if not statements:
            return None
        last = statements[-1]
        if last.kind is not NodeKind.EXPRESSION_STMT:
            return None
        step = last.child("expression")
        if step is None or not any(site.node.is_descendant_of(last) for site in counter.writes):
            return None
        init = ctx.text(declaration).rstrip().rstrip(";")
        return f"for ({init}; {ctx.text(loop.child('condition'))}; {ctx.text(step)})"


@register_check
class HoistableLoopConditionCheck(RuleCheck):
    rule_id = "HoistableLoopCondition"

    def visit_statement(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        if node.kind not in LOOP_KINDS:
            return []
        statements = significant_statements(node.child("body"))
        if len(statements) != 1 or statements[0].kind is not NodeKind.IF:
            return []
        branch = statements[0]
        if branch.child("else") is not None or branch.child("init") is not None:
            return []
        condition = branch.child("condition")
        if condition is None or condition.kind is NodeKind.VARIABLE or has_side_effects(condition):
            return []

        variables: List[Symbol] = []
        seen: Set[int] = set()
        for ident in identifiers_in(condition):
            symbol = ctx.index.resolve(ident)
            if symbol.kind in _VARIABLE_KINDS and id(symbol) not in seen:
                seen.add(id(symbol))
                variables.append(symbol)
        if not variables:
            return []
        if any(_written_within(v, node) for v in variables):
            return []
        if any(v.kind is SymbolKind.FIELD for v in variables) and _contains_call(node):
            return []

        return [self.report(
            ctx, condition,
            f"Loop-invariant condition '{ctx.text(condition)}' can be hoisted out of the loop",
            related=[node],
            suggested_fix=self._hoisted(ctx, node, branch, condition),
        )]

    @staticmethod
    def _hoisted(ctx: CheckContext, loop: SyntaxNode, branch: SyntaxNode,
                 condition: SyntaxNode) -> Optional[str]:
        """The loop wrapped in the condition, with the ``if`` replaced by its body."""
        then = branch.child("then")
        if then is None:
            return None
        source = ctx.tree.source_bytes
        head = source[loop.span.start_offset:branch.span.start_offset].decode("utf-8", errors="replace")
        tail = source[branch.span.end_offset:loop.span.end_offset].decode("utf-8", errors="replace")
        return f"if ({ctx.text(condition)}) {head}{ctx.text(then)}{tail}"
