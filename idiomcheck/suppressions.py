"""
Inline suppression comments.

  // idiomcheck-ignore                      every rule, this line
  // idiomcheck-ignore(MagicNumber, ...)    listed rules, this line
  // idiomcheck-ignore-next-line[(...)]     same, on the following line

Parse errors and internal errors are never suppressed.
"""

import logging
import re
from collections import defaultdict
from typing import Dict, Iterable, List, Set, Tuple

from idiomcheck.diagnostics import Diagnostic, DiagnosticKind
from idiomcheck.syntax_model import SyntaxTree

logger = logging.getLogger(__name__)

_MARKER = re.compile(r"idiomcheck-ignore(?P<next>-next-line)?(?:\s*\((?P<rules>[^)]*)\))?")

ALL_RULES = "*"


class SuppressionIndex:
    """(file, line) → rule ids silenced there (``"*"`` for all)."""

    def __init__(self):
        self._by_line: Dict[Tuple[str, int], Set[str]] = defaultdict(set)

    @classmethod
    def from_tree(cls, tree: SyntaxTree) -> "SuppressionIndex":
        index = cls()
        for comment in tree.comments:
            for match in _MARKER.finditer(comment.text):
                line = comment.span.start_line
                if match.group("next"):
                    line = comment.span.end_line + 1
                rules = match.group("rules")
                if rules is None:
                    index.add(tree.file_id, line, ALL_RULES)
                    continue
                for rule_id in (r.strip() for r in rules.split(",")):
                    if rule_id:
                        index.add(tree.file_id, line, rule_id)
        if index:
            logger.debug("%s: %d suppressed line(s)", tree.file_id, len(index))
        return index

    def add(self, file_id: str, line: int, rule_id: str) -> None:
        self._by_line[(file_id, line)].add(rule_id)

    def is_suppressed(self, diagnostic: Diagnostic) -> bool:
        if diagnostic.kind is not DiagnosticKind.VIOLATION:
            return False
        rules = self._by_line.get((diagnostic.span.file, diagnostic.span.start_line))
        if not rules:
            return False
        return ALL_RULES in rules or diagnostic.rule_id in rules

    def filter(self, diagnostics: Iterable[Diagnostic]) -> List[Diagnostic]:
        kept = []
        dropped = 0
        for diagnostic in diagnostics:
            if self.is_suppressed(diagnostic):
                dropped += 1
            else:
                kept.append(diagnostic)
        if dropped:
            logger.debug("Suppressed %d diagnostic(s) by inline comment", dropped)
        return kept

    def __len__(self) -> int:
        return len(self._by_line)

    def __bool__(self) -> bool:
        return bool(self._by_line)
