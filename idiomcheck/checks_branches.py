"""
Branch-shape idioms: boolean returns spelled as if/else, else after an
exiting branch, duplicated branch bodies.
"""

import logging
from typing import List, Optional, Tuple

from idiomcheck.diagnostics import Diagnostic
from idiomcheck.rule_engine import CheckContext, RuleCheck, register_check
from idiomcheck.syntax_helpers import (
    always_exits, bool_literal_value, significant_statements, single_statement,
    strip_parens, structural_diff, structurally_equal,
)
from idiomcheck.syntax_model import NodeKind, SyntaxNode

logger = logging.getLogger(__name__)

_IGNORED_IN_DIFF = {NodeKind.BREAK, NodeKind.CONTINUE, NodeKind.EMPTY}


def _returned_bool(stmt: Optional[SyntaxNode]) -> Optional[bool]:
    stmt = single_statement(stmt)
    if stmt is None or stmt.kind is not NodeKind.RETURN:
        return None
    return bool_literal_value(stmt.child("value"))


def _next_sibling(stmt: SyntaxNode) -> Optional[SyntaxNode]:
    parent = stmt.parent
    if parent is None or parent.kind is not NodeKind.COMPOUND:
        return None
    following = False
    for sibling in parent.children:
        if following and sibling.kind is not NodeKind.EMPTY:
            return sibling
        if sibling is stmt:
            following = True
    return None


def boolean_return_pattern(node: SyntaxNode) -> Optional[Tuple[bool, SyntaxNode]]:
    """For ``if (c) return X; [else] return !X;`` give ``(X, other return)``."""
    if node.kind is not NodeKind.IF or node.has("constexpr") or node.child("init") is not None:
        return None
    condition = node.child("condition")
    if condition is None or condition.kind is NodeKind.VARIABLE:
        return None
    first = _returned_bool(node.child("then"))
    if first is None:
        return None
    other_branch = node.child("else")
    if other_branch is None:
        other_branch = _next_sibling(node)
    second = _returned_bool(other_branch)
    if second is None or second == first:
        return None
    return first, single_statement(other_branch)


@register_check
class BooleanReturnIfElseCheck(RuleCheck):
    rule_id = "BooleanReturnIfElse"

    def visit_statement(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        pattern = boolean_return_pattern(node)
        if pattern is None:
            return []
        returns_true, other = pattern
        condition = ctx.text(strip_parens(node.child("condition")))
        fix = f"return {condition};" if returns_true else f"return !({condition});"
        return [self.report(ctx, node, f"Return the condition directly: '{fix}'",
                            related=[other], suggested_fix=fix)]


@register_check
class RedundantElseAfterReturnCheck(RuleCheck):
    rule_id = "RedundantElseAfterReturn"

    def visit_statement(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        if node.kind is not NodeKind.IF:
            return []
        other = node.child("else")
        if other is None or not always_exits(node.child("then")):
            return []
        if boolean_return_pattern(node) is not None:
            return []
        exit_kind = self._exit_keyword(node.child("then"))
        return [self.report(ctx, other, f"'else' after '{exit_kind}' is redundant",
                            related=[node.child("then")])]

    @staticmethod
    def _exit_keyword(branch: SyntaxNode) -> str:
        for stmt in branch.walk():
            if stmt.kind in (NodeKind.RETURN, NodeKind.THROW, NodeKind.BREAK,
                             NodeKind.CONTINUE, NodeKind.GOTO):
                return stmt.kind.value
        return "return"


@register_check
class DuplicateBranchCodeCheck(RuleCheck):
    rule_id = "DuplicateBranchCode"

    def visit_statement(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        if node.kind is NodeKind.IF:
            return self._if_else(node, ctx)
        if node.kind is NodeKind.SWITCH:
            return self._switch(node, ctx)
        return []

    # ── if / else ──

    def _if_else(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        then, other = node.child("then"), node.child("else")
        if then is None or other is None or other.kind is NodeKind.IF:
            return []
        first = significant_statements(then)
        second = significant_statements(other)
        if not first or not second:
            return []

        if self._same(first, second):
            return [self.report(ctx, other, "Branches of 'if' and 'else' are identical",
                                related=[then])]

        found: List[Diagnostic] = []
        leading = self._common_prefix(first, second)
        if leading:
            found.append(self.report(
                ctx, second[0].span.cover(second[leading - 1].span),
                f"{leading} leading statement(s) repeated in both branches; move them before the 'if'",
                related=[first[0].span.cover(first[leading - 1].span)],
            ))
        trailing = self._common_prefix(list(reversed(first[leading:])), list(reversed(second[leading:])))
        if trailing:
            found.append(self.report(
                ctx, second[-trailing].span.cover(second[-1].span),
                f"{trailing} trailing statement(s) repeated in both branches; move them after the 'if'",
                related=[first[-trailing].span.cover(first[-1].span)],
            ))
        if found:
            return found

        differences = self._near_duplicate(first, second, ctx)
        if differences is not None:
            return [self.report(ctx, other, f"Branches differ in only {differences} "
                                            f"identifier/literal substitution(s)",
                                related=[then])]
        return []

    # ── switch ──

    def _switch(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        body = node.child("body")
        cases = [c for c in significant_statements(body) if c.kind is NodeKind.CASE]
        found: List[Diagnostic] = []
        for previous, current in zip(cases, cases[1:]):
            first = self._case_statements(previous)
            second = self._case_statements(current)
            if not first or not second:
                continue
            if self._same(first, second):
                found.append(self.report(ctx, current, "Case body duplicates the previous case",
                                         related=[previous]))
                continue
            differences = self._near_duplicate(first, second, ctx)
            if differences is not None:
                found.append(self.report(ctx, current, f"Case body differs from the previous case in "
                                                       f"only {differences} substitution(s)",
                                         related=[previous]))
        return found

    @staticmethod
    def _case_statements(case: SyntaxNode) -> List[SyntaxNode]:
        statements: List[SyntaxNode] = []
        for stmt in case.children_with("body"):
            statements.extend(significant_statements(stmt))
        if statements and statements[-1].kind is NodeKind.BREAK:
            statements.pop()
        return statements

    # ── comparison ──

    @staticmethod
    def _same(first: List[SyntaxNode], second: List[SyntaxNode]) -> bool:
        return len(first) == len(second) and all(
            structurally_equal(a, b) for a, b in zip(first, second))

    @staticmethod
    def _common_prefix(first: List[SyntaxNode], second: List[SyntaxNode]) -> int:
        count = 0
        for a, b in zip(first, second):
            if a.kind in _IGNORED_IN_DIFF or not structurally_equal(a, b):
                break
            count += 1
        # never claim a whole branch; that is the identical case
        if count >= min(len(first), len(second)):
            count = min(len(first), len(second)) - 1
        return max(count, 0)

    @staticmethod
    def _near_duplicate(first: List[SyntaxNode], second: List[SyntaxNode],
                        ctx: CheckContext) -> Optional[int]:
        options = ctx.options
        if len(first) != len(second) or len(first) < 2 or options.duplicate_max_differences == 0:
            return None
        total = 0
        for a, b in zip(first, second):
            diff = structural_diff(a, b, max_depth=options.duplicate_max_depth)
            if diff is None:
                return None
            total += diff
            if total > options.duplicate_max_differences:
                return None
        return total if total > 0 else None
