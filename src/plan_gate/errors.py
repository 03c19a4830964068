"""Error taxonomy for the plan policy gate."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from plan_gate.gate import Verdict
    from plan_gate.integrity.verifier import VerificationResult


class PlanGateError(Exception):
    """Base class for every error raised by the gate."""


class MalformedInput(PlanGateError):
    """A change document or signature bundle failed structural validation."""

    def __init__(self, message: str, path: str | None = None) -> None:
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class PolicyLoadError(PlanGateError):
    """A rule file could not be parsed, or a rule id is duplicated."""

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        super().__init__(f"{source}: {message}" if source else message)


class PolicyEvaluationError(PlanGateError):
    """A rule predicate violated its contract while being evaluated."""

    def __init__(self, rule_id: str, message: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"Rule '{rule_id}' failed during evaluation: {message}")


class GateFailure(PlanGateError):
    """Evaluation completed and at least one deny finding exists."""

    def __init__(self, verdict: Verdict, hints: dict[str, str] | None = None) -> None:
        self.verdict = verdict
        self.hints = dict(hints or {})
        denied = verdict.deny_findings
        super().__init__(
            f"Policy gate rejected the plan: {len(denied)} deny finding(s)"
        )


class SigningError(PlanGateError):
    """The signer could not produce a complete signed artifact."""


class VerificationFailure(PlanGateError):
    """Hash, signature or identity verification failed. Terminal for the artifact."""

    def __init__(self, result: VerificationResult | None, message: str | None = None) -> None:
        self.result = result
        if message is None:
            reason = result.reason if result is not None else None
            message = f"Plan verification failed: {reason or 'unknown reason'}"
        super().__init__(message)


class ArtifactStateError(PlanGateError):
    """An integrity lifecycle transition was attempted from the wrong state."""
