"""Rule evaluation engine."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

from plan_gate.errors import PolicyEvaluationError
from plan_gate.plan.models import ChangeDocument
from plan_gate.policy.rules import Finding, PolicySet, Rule

logger = logging.getLogger(__name__)

_MAX_WORKERS = 32


class RuleEngine:
    """Apply every rule of a policy set to a change document.

    Rules share no state, so they may run on a thread pool. Findings are
    merged back into (rule order, resource order) so the report is the same
    for any worker count.
    """

    def __init__(self, policy_set: PolicySet, max_workers: int = 1) -> None:
        if not 1 <= max_workers <= _MAX_WORKERS:
            raise ValueError(f"max_workers must be between 1 and {_MAX_WORKERS}")
        self._policy_set = policy_set
        self._max_workers = max_workers

    @property
    def policy_set(self) -> PolicySet:
        return self._policy_set

    def evaluate(self, document: ChangeDocument) -> list[Finding]:
        rules = list(self._policy_set)
        if not rules:
            return []
        workers = min(self._max_workers, len(rules))
        if workers == 1:
            per_rule = [self._evaluate_rule(rule, document) for rule in rules]
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rule") as pool:
                per_rule = list(pool.map(lambda rule: self._evaluate_rule(rule, document), rules))

        merged = [
            (rule_pos, document.position(finding.resource_address), finding)
            for rule_pos, findings in enumerate(per_rule)
            for finding in findings
        ]
        merged.sort(key=lambda item: (item[0], item[1]))
        findings = [finding for _, _, finding in merged]
        logger.debug(
            "Evaluated %d rule(s) against %d resource change(s): %d finding(s)",
            len(rules),
            len(document),
            len(findings),
        )
        return findings

    @staticmethod
    def _evaluate_rule(rule: Rule, document: ChangeDocument) -> list[Finding]:
        try:
            findings = rule.evaluate(document)
        except Exception as exc:
            raise PolicyEvaluationError(rule.id, f"{type(exc).__name__}: {exc}") from exc
        for finding in findings:
            if not isinstance(finding, Finding):
                raise PolicyEvaluationError(
                    rule.id, f"predicate returned {type(finding).__name__}, expected Finding"
                )
            if finding.rule_id != rule.id or finding.severity is not rule.severity:
                raise PolicyEvaluationError(
                    rule.id,
                    f"predicate produced a finding tagged '{finding.rule_id}' "
                    f"with severity {finding.severity!r}",
                )
        return findings
