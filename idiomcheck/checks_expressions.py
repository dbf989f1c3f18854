"""
Expression-level idioms: magic numbers, pointer arithmetic, ``(*p).m``,
comparisons against boolean literals and operators called by name.
"""

import logging
from typing import List, Optional

from idiomcheck.diagnostics import Diagnostic
from idiomcheck.rule_engine import CheckContext, RuleCheck, register_check
from idiomcheck.syntax_helpers import bool_literal_value, literal_number, strip_parens
from idiomcheck.syntax_model import NodeCategory, NodeKind, SyntaxNode

logger = logging.getLogger(__name__)

_DECLARATION_CONTEXTS = {
    NodeKind.VARIABLE, NodeKind.FIELD, NodeKind.PARAMETER, NodeKind.ENUM, NodeKind.MEMBER_INIT,
    NodeKind.TYPE_ALIAS,
}

_SIMPLE_OPERANDS = {
    NodeKind.IDENTIFIER, NodeKind.CALL, NodeKind.MEMBER_ACCESS, NodeKind.SUBSCRIPT,
    NodeKind.PARENTHESIZED, NodeKind.THIS, NodeKind.LITERAL,
}

_UNARY_OPERATORS = {"++", "--", "-", "+", "!", "~", "*", "&"}


def _negated(ctx: CheckContext, node: SyntaxNode) -> str:
    text = ctx.text(node)
    return f"!{text}" if node.kind in _SIMPLE_OPERANDS else f"!({text})"


@register_check
class MagicNumberCheck(RuleCheck):
    rule_id = "MagicNumber"

    def visit_expression(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        if node.kind is not NodeKind.LITERAL:
            return []
        options = ctx.options
        if node.literal_kind == "string":
            if not options.magic_number_include_strings:
                return []
        elif node.literal_kind != "number":
            return []

        reported = node
        parent = node.parent
        if parent is not None and parent.kind is NodeKind.UNARY_OP and parent.operator in ("-", "+"):
            reported = parent
        text = ctx.text(reported).replace(" ", "")

        if self._allowed(node, text, options.magic_number_allow_list):
            return []
        if self._in_declaration(reported):
            return []
        if options.magic_number_ignore_loop_bounds and self._in_loop_header(reported):
            return []
        return [self.report(ctx, reported, f"Magic number {text}: use a named constant")]

    @staticmethod
    def _allowed(literal: SyntaxNode, text: str, allow_list) -> bool:
        if text in allow_list:
            return True
        if literal.literal_kind != "number":
            return False
        value = literal_number(literal.parent if text.startswith(("-", "+")) else literal)
        for entry in allow_list:
            try:
                if value is not None and float(entry) == value:
                    return True
            except ValueError:
                continue
        return False

    @staticmethod
    def _in_declaration(node: SyntaxNode) -> bool:
        for ancestor in node.ancestors():
            if ancestor.kind in _DECLARATION_CONTEXTS:
                return True
            if ancestor.category is NodeCategory.STATEMENT:
                return False
        return False

    @staticmethod
    def _in_loop_header(node: SyntaxNode) -> bool:
        current = node
        for ancestor in node.ancestors():
            if ancestor.kind is NodeKind.FOR:
                return current.role in ("init", "condition", "update")
            if ancestor.kind in (NodeKind.WHILE, NodeKind.DO_WHILE):
                return current.role == "condition"
            if ancestor.kind is NodeKind.COMPOUND or ancestor.kind is NodeKind.LAMBDA:
                return False
            current = ancestor
        return False


@register_check
class PointerArithmeticIndexingCheck(RuleCheck):
    rule_id = "PointerArithmeticIndexing"

    def visit_expression(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        if node.kind is not NodeKind.UNARY_OP or node.operator != "*":
            return []
        inner = strip_parens(node.child("operand"))
        if inner is None or inner.kind is not NodeKind.BINARY_OP or inner.operator != "+":
            return []
        left, right = inner.child("left"), inner.child("right")
        if left is None or right is None:
            return []

        for pointer, offset in ((left, right), (right, left)):
            if self._is_pointer(ctx, pointer) and not self._is_pointer(ctx, offset):
                fix = f"{ctx.text(pointer)}[{ctx.text(offset)}]"
                return [self.report(ctx, node, f"Prefer subscript: use '{fix}' instead of "
                                               f"pointer arithmetic", suggested_fix=fix)]
        return []

    @staticmethod
    def _is_pointer(ctx: CheckContext, node: SyntaxNode) -> bool:
        node = strip_parens(node)
        if node is None or node.kind is not NodeKind.IDENTIFIER:
            return False
        symbol = ctx.index.resolve(node)
        if symbol.is_unknown or symbol.declaration is None:
            return False
        declaration = symbol.declaration
        if declaration.has("pointer") or declaration.has("array"):
            return True
        declared = symbol.declared_type or ""
        return declared.endswith("*") or declared.endswith("[]")


@register_check
class PreferArrowOperatorCheck(RuleCheck):
    rule_id = "PreferArrowOperator"

    def visit_expression(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        if node.kind is not NodeKind.MEMBER_ACCESS or node.operator != ".":
            return []
        obj = node.child("object")
        if obj is None or obj.kind is not NodeKind.PARENTHESIZED:
            return []
        deref = strip_parens(obj)
        if deref is None or deref.kind is not NodeKind.UNARY_OP or deref.operator != "*":
            return []
        pointer = deref.child("operand")
        if pointer is None:
            return []
        fix = f"{ctx.text(pointer)}->{node.name}"
        return [self.report(ctx, node, f"Prefer arrow: use '{fix}' instead of '{ctx.text(node)}'",
                            suggested_fix=fix)]


@register_check
class BoolLiteralComparisonCheck(RuleCheck):
    rule_id = "BoolLiteralComparison"

    def visit_expression(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        if node.kind is not NodeKind.BINARY_OP or node.operator not in ("==", "!="):
            return []
        left, right = node.child("left"), node.child("right")
        if left is None or right is None:
            return []
        literal = bool_literal_value(right)
        other = left
        if literal is None:
            literal = bool_literal_value(left)
            other = right
        if literal is None:
            return []

        keeps_truth = literal == (node.operator == "==")
        fix = ctx.text(other) if keeps_truth else _negated(ctx, other)
        literal_text = "true" if literal else "false"
        return [self.report(ctx, node, f"Comparison with boolean literal '{literal_text}': "
                                       f"use '{fix}'", suggested_fix=fix)]


@register_check
class ExplicitOperatorCallCheck(RuleCheck):
    rule_id = "ExplicitOperatorCall"

    def visit_expression(self, node: SyntaxNode, ctx: CheckContext) -> List[Diagnostic]:
        if node.kind is not NodeKind.CALL:
            return []
        callee = strip_parens(node.child("callee"))
        if callee is None or not callee.name or not callee.name.startswith("operator"):
            return []
        symbol = callee.name[len("operator"):].strip()
        if not symbol or symbol[0].isalpha() or symbol[0] in "_\"":
            # conversions, operator new/delete, user-defined literals
            return []
        args = node.children_with("argument")

        if callee.kind is NodeKind.MEMBER_ACCESS:
            obj = callee.child("object")
            if obj is None:
                return []
            receiver = ctx.text(obj)
            if callee.operator == "->":
                receiver = f"*{receiver}" if obj.kind is not NodeKind.THIS else "*this"
            fix = self._operator_syntax(ctx, symbol, [receiver] + [ctx.text(a) for a in args])
        elif callee.kind is NodeKind.IDENTIFIER:
            if callee.owner is not None:
                # Base::operator=(other) and friends
                return []
            fix = self._operator_syntax(ctx, symbol, [ctx.text(a) for a in args])
        else:
            return []

        message = f"Explicit call of '{callee.name}': use operator syntax"
        if fix:
            message += f" ('{fix}')"
        return [self.report(ctx, node, message, suggested_fix=fix)]

    @staticmethod
    def _operator_syntax(ctx: CheckContext, symbol: str, operands: List[str]) -> Optional[str]:
        if symbol == "()":
            return f"{operands[0]}({', '.join(operands[1:])})" if operands else None
        if symbol == "[]":
            return f"{operands[0]}[{operands[1]}]" if len(operands) == 2 else None
        if symbol == "->":
            return None
        if len(operands) == 2:
            if symbol in ("++", "--"):
                # postfix form carries a dummy int argument
                return f"{operands[0]}{symbol}"
            return f"{operands[0]} {symbol} {operands[1]}"
        if len(operands) == 1 and symbol in _UNARY_OPERATORS:
            return f"{symbol}{operands[0]}"
        return None
