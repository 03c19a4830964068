"""Gate evaluation: findings to verdict to exit status."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import IntEnum

from plan_gate.errors import GateFailure, VerificationFailure
from plan_gate.policy.rules import Finding, PolicySet, Severity


class ExitStatus(IntEnum):
    SUCCESS = 0
    FAILURE = 1
    ERROR = 2


@dataclass(frozen=True)
class Verdict:
    passed: bool
    findings: tuple[Finding, ...] = field(default_factory=tuple)

    @property
    def deny_findings(self) -> list[Finding]:
        return [f for f in self.findings if f.severity is Severity.DENY]

    @property
    def warn_findings(self) -> list[Finding]:
        return [f for f in self.findings if f.severity is Severity.WARN]

    @property
    def exit_status(self) -> ExitStatus:
        return ExitStatus.SUCCESS if self.passed else ExitStatus.FAILURE

    def raise_for_verdict(self, hints: dict[str, str] | None = None) -> None:
        if not self.passed:
            raise GateFailure(self, hints)

    def to_dict(self) -> dict[str, object]:
        return {
            "passed": self.passed,
            "summary": {
                "deny": len(self.deny_findings),
                "warn": len(self.warn_findings),
            },
            "findings": [finding.to_dict() for finding in self.findings],
        }


def evaluate_gate(findings: Iterable[Finding]) -> Verdict:
    ordered = tuple(findings)
    passed = not any(f.severity is Severity.DENY for f in ordered)
    return Verdict(passed=passed, findings=ordered)


def exit_status_for(exc: BaseException) -> ExitStatus:
    """Map an outcome exception to a process exit status.

    Expected rejections (gate or verification) are FAILURE; anything that
    kept the tool itself from completing is ERROR.
    """
    if isinstance(exc, (GateFailure, VerificationFailure)):
        return ExitStatus.FAILURE
    return ExitStatus.ERROR


def render_report(verdict: Verdict, policy_set: PolicySet | None = None) -> list[str]:
    lines: list[str] = []
    for finding in verdict.findings:
        lines.append(f"{finding.severity.value.upper()} [{finding.rule_id}] {finding.message}")

    deny = len(verdict.deny_findings)
    warn = len(verdict.warn_findings)
    if verdict.passed:
        lines.append(f"PASS: 0 deny, {warn} warn")
        return lines

    lines.append(f"FAIL: {deny} deny, {warn} warn")
    if policy_set is not None:
        failing: list[str] = []
        for finding in verdict.deny_findings:
            if finding.rule_id not in failing:
                failing.append(finding.rule_id)
        hints = policy_set.remediation_hints()
        for rule_id in failing:
            if rule_id in hints:
                lines.append(f"  fix [{rule_id}]: {hints[rule_id]}")
    return lines
