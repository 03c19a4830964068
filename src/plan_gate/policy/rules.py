"""Rule, finding and policy-set types."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from enum import Enum

from plan_gate.errors import PolicyLoadError
from plan_gate.plan.models import ChangeDocument


class Severity(str, Enum):
    DENY = "deny"
    WARN = "warn"


@dataclass(frozen=True)
class Finding:
    rule_id: str
    severity: Severity
    resource_address: str | None
    message: str

    def to_dict(self) -> dict[str, object]:
        return {
            "rule_id": self.rule_id,
            "severity": self.severity.value,
            "resource_address": self.resource_address,
            "message": self.message,
        }


Predicate = Callable[[ChangeDocument], Iterable[Finding]]


@dataclass(frozen=True)
class Rule:
    id: str
    severity: Severity
    predicate: Predicate
    description: str = ""
    remediation: str | None = None
    source: str | None = None

    def evaluate(self, document: ChangeDocument) -> list[Finding]:
        return list(self.predicate(document))


class PolicySet:
    """Rules keyed by id. Iteration follows insertion order."""

    def __init__(self, rules: Iterable[Rule] = ()) -> None:
        self._rules: dict[str, Rule] = {}
        for rule in rules:
            self.add(rule)

    def add(self, rule: Rule) -> None:
        existing = self._rules.get(rule.id)
        if existing is not None:
            where = f" (first defined in {existing.source})" if existing.source else ""
            raise PolicyLoadError(f"Duplicate rule id '{rule.id}'{where}", source=rule.source)
        self._rules[rule.id] = rule

    def get(self, rule_id: str) -> Rule | None:
        return self._rules.get(rule_id)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._rules

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)

    @property
    def rule_ids(self) -> list[str]:
        return list(self._rules)

    def remediation_hints(self) -> dict[str, str]:
        return {rule.id: rule.remediation for rule in self if rule.remediation}
