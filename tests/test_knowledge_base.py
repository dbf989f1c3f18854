"""
Knowledge base completeness: every rule documented, every check catalogued.
"""

import os
import sys
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from idiomcheck.diagnostics import Severity
from idiomcheck.idiom_knowledge_base import (
    IdiomCategory, format_catalogue, format_rule_explanation, get_all_rules, get_rule,
    get_rules_by_category, related_rules,
)
from idiomcheck.rule_engine import default_registry


EXPECTED_RULES = {
    "PreferPreIncrement", "RedundantLoopCondition", "PreferForLoop", "HoistableLoopCondition",
    "MagicNumber", "PointerArithmeticIndexing", "PreferArrowOperator", "BoolLiteralComparison",
    "BooleanReturnIfElse", "RedundantElseAfterReturn", "DuplicateBranchCode",
    "UnusedVariable", "UnreachableCode", "UnsignedForNonNegative",
    "PreferMemberInitList", "RedundantThisQualifier", "MissingConstQualifier",
    "InequalityNotDelegating", "ArrowNotDelegating", "IteratorAliasUsage",
    "DefaultableSpecialMember", "ExplicitOperatorCall",
}


class TestKnowledgeBase(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.rules = get_all_rules()
        cls.registry = default_registry()

    def test_rule_set(self):
        self.assertEqual(set(self.rules), EXPECTED_RULES)

    def test_fields_complete(self):
        for rule_id, rule in self.rules.items():
            for field_name in ("rule_id", "title", "category", "rationale",
                               "non_compliant", "compliant", "fix_strategy"):
                self.assertTrue(getattr(rule, field_name), f"{rule_id}.{field_name} is empty")
            self.assertEqual(rule.rule_id, rule_id)

    def test_categories(self):
        total = 0
        for category in ("Structural", "Dataflow", "Class"):
            total += len(get_rules_by_category(category))
        self.assertEqual(total, len(self.rules))
        self.assertEqual(set(get_rules_by_category("dataflow")),
                         {"UnusedVariable", "UnreachableCode", "UnsignedForNonNegative"})

    def test_cross_references_resolve(self):
        for rule_id, rule in self.rules.items():
            for ref in rule.cross_references:
                self.assertIsNotNone(get_rule(ref), f"{rule_id} refers to unknown rule {ref}")

    def test_every_rule_has_a_check(self):
        self.assertEqual(set(self.registry.rule_ids()), EXPECTED_RULES)

    def test_check_descriptions(self):
        for check in self.registry.create_all():
            self.assertEqual(check.description, get_rule(check.rule_id).title)

    def test_default_severities(self):
        severities = {c.rule_id: c.default_severity for c in self.registry.create_all()}
        self.assertEqual(severities["UnsignedForNonNegative"], Severity.INFO)
        self.assertEqual(severities["MagicNumber"], Severity.WARNING)

    def test_category_lookup_accepts_enum(self):
        self.assertEqual(get_rules_by_category(IdiomCategory.CLASS), get_rules_by_category("CLASS"))
        self.assertEqual(len(get_rules_by_category(IdiomCategory.STRUCTURAL)), 11)
        self.assertEqual(get_rules_by_category("Unknown"), {})

    def test_related_rules_are_symmetric(self):
        for rule_id in self.rules:
            for other in related_rules(rule_id):
                self.assertIn(rule_id, [r.rule_id for r in related_rules(other.rule_id)],
                              f"{other.rule_id} does not list {rule_id}")

    def test_related_rules(self):
        self.assertEqual([r.rule_id for r in related_rules("BooleanReturnIfElse")],
                         ["BoolLiteralComparison", "RedundantElseAfterReturn"])
        self.assertEqual(related_rules("MagicNumber"), [])
        self.assertEqual(related_rules("Nope"), [])


class TestRendering(unittest.TestCase):

    def test_explanation(self):
        text = format_rule_explanation("BooleanReturnIfElse")
        lines = text.splitlines()
        self.assertTrue(lines[0].startswith("## BooleanReturnIfElse: "))
        self.assertEqual(lines[1], "*Structural idiom*")
        self.assertIn("**Instead of**", text)
        self.assertIn("**Write**", text)
        self.assertEqual(text.count("```cpp"), 2)
        self.assertIn("- `RedundantElseAfterReturn`: " + get_rule("RedundantElseAfterReturn").title, text)

    def test_explanation_without_related_rules(self):
        text = format_rule_explanation("MagicNumber")
        self.assertNotIn("**See also**", text)
        self.assertTrue(text.endswith(get_rule("MagicNumber").fix_strategy))

    def test_unknown_rule(self):
        self.assertEqual(format_rule_explanation("Nope"), "Unknown rule: Nope")

    def test_catalogue(self):
        text = format_catalogue()
        self.assertEqual([l for l in text.splitlines() if l.startswith("### ")],
                         ["### Structural (11)", "### Dataflow (3)", "### Class (8)"])
        for rule in get_all_rules().values():
            self.assertIn(f"| `{rule.rule_id}` | {rule.title} |", text)


if __name__ == "__main__":
    unittest.main()
