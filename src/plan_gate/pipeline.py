"""Gate passes: policy check, plan signing, and verification before apply.

Each pass runs once. Nothing here retries: a malformed plan, a broken rule
file, a failed signature or a mismatched identity all require a fresh plan.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import NamedTuple

from cryptography import x509

from plan_gate.audit.artifacts import ArtifactStore
from plan_gate.audit.models import ArtifactRecord
from plan_gate.config import Settings, load_settings
from plan_gate.errors import MalformedInput, PolicyEvaluationError, PolicyLoadError
from plan_gate.gate import ExitStatus, Verdict, evaluate_gate, render_report
from plan_gate.integrity.bundle import SignedArtifact, read_bundle, write_bundle
from plan_gate.integrity.identity import ExpectedIdentity, IdentityContext
from plan_gate.integrity.signer import Signer
from plan_gate.integrity.tracker import PlanArtifact
from plan_gate.integrity.verifier import (
    VerificationResult,
    load_trusted_roots,
    require_verified,
)
from plan_gate.logging_utils import get_logger
from plan_gate.plan.loader import load_change_document
from plan_gate.policy.engine import RuleEngine
from plan_gate.policy.loader import load_policy_set
from plan_gate.policy.rules import Severity


@dataclass
class GateOutcome:
    exit_status: ExitStatus
    verdict: Verdict | None = None
    error: Exception | None = None
    report: list[str] = field(default_factory=list)
    record: ArtifactRecord | None = None
    report_record: ArtifactRecord | None = None


class PlanPaths(NamedTuple):
    plan: Path
    plan_json: Path
    bundle: Path


def run_policy_check(
    plan_json_path: str | Path,
    policy_dir: str | Path | None = None,
    *,
    max_workers: int | None = None,
    store: ArtifactStore | None = None,
) -> GateOutcome:
    """Evaluate a plan JSON document against a rule directory."""
    logger = get_logger(__name__)
    settings = load_settings()
    policy_dir = policy_dir if policy_dir is not None else settings.policy.path
    workers = max_workers if max_workers is not None else settings.policy.max_workers

    logger.info("Running policy checks: plan=%s policies=%s", plan_json_path, policy_dir)
    try:
        policy_set = load_policy_set(policy_dir)
        document = load_change_document(plan_json_path)
        findings = RuleEngine(policy_set, max_workers=workers).evaluate(document)
    except (MalformedInput, PolicyLoadError, PolicyEvaluationError, OSError) as exc:
        logger.error("Policy check could not complete: %s", exc)
        return GateOutcome(exit_status=ExitStatus.ERROR, error=exc)

    verdict = evaluate_gate(findings)
    report = render_report(verdict, policy_set)
    for finding in verdict.findings:
        if finding.severity is Severity.DENY:
            logger.error("[%s] %s", finding.rule_id, finding.message)
        else:
            logger.warning("[%s] %s", finding.rule_id, finding.message)

    record = report_record = None
    if store is not None:
        payload = verdict.to_dict()
        payload["plan"] = str(plan_json_path)
        payload["rules"] = policy_set.rule_ids
        record = store.write_json("policy-report", payload, prefix="report")
        report_record = store.write_text("policy-report-text", report, prefix="report")

    if verdict.passed:
        logger.info("All policy checks passed (%d warning(s))", len(verdict.warn_findings))
    else:
        logger.error(
            "Policy checks failed: %d deny finding(s). Fix the plan and re-run planning.",
            len(verdict.deny_findings),
        )
        for line in report:
            if line.startswith("  fix "):
                logger.info(line.strip())
    return GateOutcome(
        exit_status=verdict.exit_status,
        verdict=verdict,
        report=report,
        record=record,
        report_record=report_record,
    )


def sign_plan(
    plan_path: str | Path,
    bundle_path: str | Path,
    identity: IdentityContext | None,
    signer: Signer,
) -> SignedArtifact:
    """Sign plan bytes and write the bundle. No bundle is written on failure."""
    logger = get_logger(__name__)
    plan_file = Path(plan_path)
    if not plan_file.exists():
        raise FileNotFoundError(f"Plan file not found: {plan_file}")

    artifact = PlanArtifact(plan_file.read_bytes())
    signed = artifact.sign(identity, signer)
    written = write_bundle(bundle_path, signed)
    logger.info("Signature bundle created: %s (hash %s)", written, signed.digest_hex)
    return signed


def verify_plan(
    plan_path: str | Path,
    bundle_path: str | Path,
    expected: ExpectedIdentity | None = None,
    trusted_roots: Sequence[x509.Certificate] = (),
    *,
    store: ArtifactStore | None = None,
) -> VerificationResult:
    logger = get_logger(__name__)
    plan_file = Path(plan_path)
    if not plan_file.exists():
        raise FileNotFoundError(f"Plan file not found: {plan_file}")

    signed = read_bundle(bundle_path)
    artifact = PlanArtifact(plan_file.read_bytes(), signed)
    if expected is not None:
        logger.info(
            "Verifying signer identity: %s (issuer %s)",
            expected.identity or "<any>",
            expected.issuer or "<any>",
        )
    result = artifact.verify(expected, trusted_roots)

    if store is not None:
        store.write_json(
            "verification",
            {**result.to_dict(), "plan": str(plan_file), "bundle": str(bundle_path)},
            prefix="verify",
            plan_hash=artifact.digest_hex,
        )
    if not result.valid:
        logger.error("The plan may have been tampered with or the signature is invalid.")
    return result


def authorize_apply(
    plan_path: str | Path,
    bundle_path: str | Path,
    expected: ExpectedIdentity | None = None,
    trusted_roots: Sequence[x509.Certificate] = (),
) -> VerificationResult:
    """Verify the plan and raise ``VerificationFailure`` unless apply may proceed."""
    result = verify_plan(plan_path, bundle_path, expected, trusted_roots)
    require_verified(result)
    return result


def expected_identity_from_settings(settings: Settings | None = None) -> ExpectedIdentity | None:
    signing = (settings or load_settings()).signing
    if not signing.identity_pinned:
        return None
    return ExpectedIdentity(
        identity=signing.certificate_identity,
        issuer=signing.certificate_oidc_issuer,
    )


def trusted_roots_from_settings(settings: Settings | None = None) -> list[x509.Certificate]:
    signing = (settings or load_settings()).signing
    if not signing.trusted_roots_path:
        return []
    return load_trusted_roots(signing.trusted_roots_path)


def plan_paths(settings: Settings | None = None) -> PlanPaths:
    """Plan, plan JSON and bundle locations, relative to the working directory."""
    storage = (settings or load_settings()).storage
    return PlanPaths(
        plan=Path(storage.plan_file),
        plan_json=Path(storage.plan_json_file),
        bundle=Path(storage.bundle_file),
    )


def default_store(settings: Settings | None = None) -> ArtifactStore:
    return ArtifactStore((settings or load_settings()).storage.artifact_path)
