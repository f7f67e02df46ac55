from __future__ import annotations

from typing import Iterable, Optional

from ..offers import OfferDraft
from .base import OfferContext, Rule


class RuleRegistry:
    def __init__(self, rules: Optional[Iterable[Rule]] = None) -> None:
        self._rules: dict[str, Rule] = {}
        if rules:
            for rule in rules:
                self.register(rule)

    def register(self, rule: Rule) -> None:
        self._rules[rule.rule_id] = rule

    def unregister(self, rule_id: str) -> None:
        self._rules.pop(rule_id, None)

    def set_enabled(self, rule_id: str, enabled: bool) -> None:
        rule = self._rules.get(rule_id)
        if rule is not None:
            rule.enabled = enabled

    def list_rules(self) -> list[Rule]:
        return list(self._rules.values())

    def ordered_rules(self) -> list[Rule]:
        enabled_rules = [rule for rule in self._rules.values() if rule.enabled]
        return sorted(enabled_rules, key=lambda rule: (rule.priority, rule.rule_id))


def validate_all(draft: OfferDraft, ctx: OfferContext, registry: Optional[RuleRegistry] = None) -> None:
    """Run every enabled rule in (priority, rule_id) order; the first failure raises."""
    registry = registry or get_default_registry()
    for rule in registry.ordered_rules():
        rule.validate(draft, ctx)


def get_default_registry() -> RuleRegistry:
    from .builtin import build_builtin_rules

    return RuleRegistry(build_builtin_rules())
