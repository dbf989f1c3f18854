"""
Rule engine: the check base class, per-run context and the registry.

A check is a small class with a ``rule_id`` and any of the three visit
hooks.  ``RuleCheck.run`` walks the tree once and dispatches each node by
category:

  • visit_declaration(node, ctx)
  • visit_statement(node, ctx)
  • visit_expression(node, ctx)

Each hook returns an iterable of Diagnostics (``report`` builds them).
Checks are read-only over the Syntax Model and the Semantic Index.

New idioms are added by decorating a new class with ``@register_check``.
"""

import importlib
import logging
from typing import ClassVar, Dict, Iterable, List, Optional, Sequence, Type, Union

from idiomcheck.config import AnalysisOptions
from idiomcheck.diagnostics import Diagnostic, DiagnosticKind, Severity
from idiomcheck.idiom_knowledge_base import get_rule
from idiomcheck.semantic_index import SemanticIndex
from idiomcheck.syntax_model import NodeCategory, SourceSpan, SyntaxNode, SyntaxTree

logger = logging.getLogger(__name__)

_CHECK_MODULES = (
    "idiomcheck.checks_loops",
    "idiomcheck.checks_expressions",
    "idiomcheck.checks_branches",
    "idiomcheck.checks_dataflow",
    "idiomcheck.checks_classes",
)


class CheckContext:
    """Everything a check may look at while analysing one file."""

    def __init__(self, tree: SyntaxTree, index: SemanticIndex, options: AnalysisOptions,
                 rule_id: str, severity: Severity):
        self.tree = tree
        self.index = index
        self.options = options
        self.rule_id = rule_id
        self.severity = severity

    @property
    def file_id(self) -> str:
        return self.tree.file_id

    def text(self, node: Union[SyntaxNode, SourceSpan]) -> str:
        return self.tree.text_of(node)


class RuleCheck:
    """Base class for every idiom check."""

    rule_id: ClassVar[str] = ""
    default_severity: ClassVar[Severity] = Severity.WARNING

    @property
    def description(self) -> str:
        rule = get_rule(self.rule_id)
        return rule.title if rule is not None else self.rule_id

    def run(self, ctx: CheckContext) -> List[Diagnostic]:
        diagnostics: List[Diagnostic] = []
        for node in ctx.tree.walk():
            category = node.category
            if category is NodeCategory.DECLARATION:
                found = self.visit_declaration(node, ctx)
            elif category is NodeCategory.STATEMENT:
                found = self.visit_statement(node, ctx)
            elif category is NodeCategory.EXPRESSION:
                found = self.visit_expression(node, ctx)
            else:
                continue
            if found:
                diagnostics.extend(found)
        return diagnostics

    def visit_declaration(self, node: SyntaxNode, ctx: CheckContext) -> Iterable[Diagnostic]:
        return ()

    def visit_statement(self, node: SyntaxNode, ctx: CheckContext) -> Iterable[Diagnostic]:
        return ()

    def visit_expression(self, node: SyntaxNode, ctx: CheckContext) -> Iterable[Diagnostic]:
        return ()

    def report(self, ctx: CheckContext, where: Union[SyntaxNode, SourceSpan], message: str,
               related: Sequence[Union[SyntaxNode, SourceSpan]] = (),
               suggested_fix: Optional[str] = None) -> Diagnostic:
        span = where.span if isinstance(where, SyntaxNode) else where
        return Diagnostic(
            rule_id=self.rule_id,
            severity=ctx.severity,
            span=span,
            message=message,
            kind=DiagnosticKind.VIOLATION,
            related=tuple(r.span if isinstance(r, SyntaxNode) else r for r in related),
            suggested_fix=suggested_fix,
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} '{self.rule_id}'>"


# ═══════════════════════════════════════════════════════════════════════
#  Registry
# ═══════════════════════════════════════════════════════════════════════

class CheckRegistry:
    """Rule id → check class."""

    def __init__(self):
        self._checks: Dict[str, Type[RuleCheck]] = {}

    def register(self, check_cls: Type[RuleCheck]) -> Type[RuleCheck]:
        rule_id = check_cls.rule_id
        if not rule_id:
            raise ValueError(f"{check_cls.__name__} has no rule_id")
        if rule_id in self._checks and self._checks[rule_id] is not check_cls:
            raise ValueError(f"Rule id '{rule_id}' is already registered "
                             f"by {self._checks[rule_id].__name__}")
        if get_rule(rule_id) is None:
            raise ValueError(f"Rule id '{rule_id}' has no knowledge base entry")
        self._checks[rule_id] = check_cls
        return check_cls

    def get(self, rule_id: str) -> Optional[Type[RuleCheck]]:
        return self._checks.get(rule_id)

    def rule_ids(self) -> List[str]:
        return sorted(self._checks)

    def create_all(self, enabled: Optional[Iterable[str]] = None) -> List[RuleCheck]:
        """Instantiate checks in rule-id order (only ``enabled`` ones when given)."""
        wanted = set(enabled) if enabled is not None else None
        return [self._checks[rule_id]() for rule_id in self.rule_ids()
                if wanted is None or rule_id in wanted]

    def __contains__(self, rule_id: str) -> bool:
        return rule_id in self._checks

    def __len__(self) -> int:
        return len(self._checks)


_DEFAULT_REGISTRY = CheckRegistry()


def register_check(check_cls: Type[RuleCheck]) -> Type[RuleCheck]:
    """Class decorator adding a check to the default registry."""
    return _DEFAULT_REGISTRY.register(check_cls)


def default_registry() -> CheckRegistry:
    """The registry holding every bundled check."""
    for module in _CHECK_MODULES:
        importlib.import_module(module)
    return _DEFAULT_REGISTRY
