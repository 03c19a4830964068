from __future__ import annotations

import json
import shutil
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization

from plan_gate import config
from plan_gate.audit.artifacts import ArtifactStore
from plan_gate.errors import MalformedInput, PolicyLoadError, SigningError, VerificationFailure
from plan_gate.gate import ExitStatus
from plan_gate.integrity.bundle import read_bundle
from plan_gate.integrity.identity import ExpectedIdentity
from plan_gate.pipeline import (
    authorize_apply,
    default_store,
    expected_identity_from_settings,
    plan_paths,
    run_policy_check,
    sign_plan,
    trusted_roots_from_settings,
    verify_plan,
)
from plan_gate.policy.rules import Severity

from plan_factories import GITHUB_ISSUER, SIGNER_EMAIL, SigningPKI, change, plan

PINNED = ExpectedIdentity(identity=SIGNER_EMAIL, issuer=GITHUB_ISSUER)


def _write_plan(tmp_path: Path, document: dict) -> Path:
    path = tmp_path / "tfplan.json"
    path.write_text(json.dumps(document), encoding="utf-8")
    return path


def test_open_rdp_fails_with_single_finding(policy_dir: Path, fixtures_dir: Path) -> None:
    outcome = run_policy_check(fixtures_dir / "plan_open_rdp.json", policy_dir)

    assert outcome.exit_status is ExitStatus.FAILURE
    assert outcome.verdict is not None
    assert [(f.rule_id, f.severity) for f in outcome.verdict.findings] == [
        ("sg_open_ingress", Severity.DENY)
    ]
    assert outcome.report == [
        "DENY [sg_open_ingress] Security group 'aws_vpc_security_group_ingress_rule.rdp' "
        "allows ingress on port 3389 from ::/0",
        "FAIL: 1 deny, 0 warn",
        "  fix [sg_open_ingress]: Use specific CIDR blocks instead of 0.0.0.0/0.",
    ]


def test_compliant_plan_passes(policy_dir: Path, fixtures_dir: Path) -> None:
    outcome = run_policy_check(fixtures_dir / "plan_compliant.json", policy_dir, max_workers=2)

    assert outcome.exit_status is ExitStatus.SUCCESS
    assert outcome.report == ["PASS: 0 deny, 0 warn"]


def test_warnings_do_not_fail(policy_dir: Path, tmp_path: Path) -> None:
    path = _write_plan(tmp_path, plan(change("aws_s3_bucket.a", "aws_s3_bucket", {"bucket": "a"})))

    outcome = run_policy_check(path, policy_dir)

    assert outcome.exit_status is ExitStatus.SUCCESS
    assert len(outcome.verdict.warn_findings) == 1


def test_malformed_plan_is_error(policy_dir: Path, fixtures_dir: Path) -> None:
    outcome = run_policy_check(fixtures_dir / "plan_malformed.json", policy_dir)

    assert outcome.exit_status is ExitStatus.ERROR
    assert isinstance(outcome.error, MalformedInput)
    assert outcome.verdict is None


def test_missing_plan_is_error(policy_dir: Path, tmp_path: Path) -> None:
    outcome = run_policy_check(tmp_path / "missing.json", policy_dir)

    assert outcome.exit_status is ExitStatus.ERROR
    assert isinstance(outcome.error, FileNotFoundError)


def test_broken_rules_are_error(policy_dir: Path, tmp_path: Path, fixtures_dir: Path) -> None:
    rules = tmp_path / "rules"
    shutil.copytree(policy_dir, rules)
    (rules / "zz_broken.yaml").write_text("rules: [", encoding="utf-8")

    outcome = run_policy_check(fixtures_dir / "plan_compliant.json", rules)

    assert outcome.exit_status is ExitStatus.ERROR
    assert isinstance(outcome.error, PolicyLoadError)


def test_policy_dir_from_settings(
    monkeypatch: pytest.MonkeyPatch, policy_dir: Path, fixtures_dir: Path
) -> None:
    monkeypatch.setenv("POLICY_DIR", str(policy_dir))

    outcome = run_policy_check(fixtures_dir / "plan_open_rdp.json")

    assert outcome.exit_status is ExitStatus.FAILURE


def test_report_written_to_store(policy_dir: Path, fixtures_dir: Path, tmp_path: Path) -> None:
    store = ArtifactStore(str(tmp_path / "artifacts"))

    outcome = run_policy_check(fixtures_dir / "plan_open_rdp.json", policy_dir, store=store)

    assert outcome.record is not None
    assert outcome.record.kind == "policy-report"
    saved = store.read_json(outcome.record.location)
    assert saved["passed"] is False
    assert saved["summary"] == {"deny": 1, "warn": 0}
    assert saved["rules"][0] == "iam_wildcard"


def test_sign_verify_authorize(tmp_path: Path, pki: SigningPKI) -> None:
    plan_file = tmp_path / "tfplan"
    plan_file.write_bytes(b"binary plan")
    bundle = tmp_path / "tfplan.bundle"

    signed = sign_plan(plan_file, bundle, pki.identity, pki.signer)

    assert bundle.exists()
    result = verify_plan(plan_file, bundle, PINNED, [pki.ca_cert])
    assert result.valid
    assert authorize_apply(plan_file, bundle, PINNED).valid
    assert read_bundle(bundle) == signed


def test_tampered_plan_blocks_apply(tmp_path: Path, pki: SigningPKI) -> None:
    plan_file = tmp_path / "tfplan"
    plan_file.write_bytes(b"binary plan")
    bundle = tmp_path / "tfplan.bundle"
    sign_plan(plan_file, bundle, pki.identity, pki.signer)
    plan_file.write_bytes(b"binary plan, edited")

    with pytest.raises(VerificationFailure, match="artifact hash mismatch") as excinfo:
        authorize_apply(plan_file, bundle, PINNED)
    assert excinfo.value.result.signature_valid


def test_sign_failure_writes_no_bundle(tmp_path: Path, pki: SigningPKI) -> None:
    plan_file = tmp_path / "tfplan"
    plan_file.write_bytes(b"binary plan")
    bundle = tmp_path / "tfplan.bundle"

    with pytest.raises(SigningError):
        sign_plan(plan_file, bundle, None, pki.signer)
    assert not bundle.exists()


def test_sign_missing_plan(tmp_path: Path, pki: SigningPKI) -> None:
    with pytest.raises(FileNotFoundError):
        sign_plan(tmp_path / "tfplan", tmp_path / "b", pki.identity, pki.signer)


def test_verification_result_stored(tmp_path: Path, pki: SigningPKI) -> None:
    plan_file = tmp_path / "tfplan"
    plan_file.write_bytes(b"binary plan")
    bundle = tmp_path / "tfplan.bundle"
    sign_plan(plan_file, bundle, pki.identity, pki.signer)
    store = ArtifactStore(str(tmp_path / "artifacts"))

    verify_plan(plan_file, bundle, store=store)

    [saved_path] = list(store.base_path.glob("verify-*.json"))
    saved = json.loads(saved_path.read_text(encoding="utf-8"))
    assert saved["valid"] is True
    assert saved["reason"] == "no identity pinned"


def test_expected_identity_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    assert expected_identity_from_settings() is None

    monkeypatch.setenv("CERTIFICATE_IDENTITY", SIGNER_EMAIL)
    monkeypatch.setenv("CERTIFICATE_OIDC_ISSUER", GITHUB_ISSUER)
    config._load_settings_cached.cache_clear()

    assert expected_identity_from_settings() == PINNED


def test_trusted_roots_from_settings(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, pki: SigningPKI
) -> None:
    assert trusted_roots_from_settings() == []

    roots = tmp_path / "roots.pem"
    roots.write_bytes(pki.ca_cert.public_bytes(serialization.Encoding.PEM))
    monkeypatch.setenv("TRUSTED_ROOTS_PATH", str(roots))
    config._load_settings_cached.cache_clear()

    assert trusted_roots_from_settings() == [pki.ca_cert]


def test_plan_paths_and_store_from_settings(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("PLAN_FILE", "out/plan.tfplan")
    monkeypatch.setenv("ARTIFACT_PATH", str(tmp_path / "artifacts"))
    config._load_settings_cached.cache_clear()

    paths = plan_paths()
    store = default_store()

    assert paths.plan == Path("out/plan.tfplan")
    assert paths.plan_json == Path("tfplan.json")
    assert paths.bundle == Path("tfplan.bundle")
    assert store.base_path == (tmp_path / "artifacts").resolve()


def test_unreadable_plan_path_is_error(policy_dir: Path, tmp_path: Path) -> None:
    outcome = run_policy_check(tmp_path, policy_dir)

    assert outcome.exit_status is ExitStatus.ERROR
    assert isinstance(outcome.error, MalformedInput)
    assert outcome.verdict is None


def test_text_report_written_to_store(
    policy_dir: Path, fixtures_dir: Path, tmp_path: Path
) -> None:
    store = ArtifactStore(tmp_path / "artifacts")

    outcome = run_policy_check(fixtures_dir / "plan_open_rdp.json", policy_dir, store=store)

    assert outcome.report_record is not None
    assert outcome.report_record.kind == "policy-report-text"
    assert store.read_text(outcome.report_record.location).splitlines() == outcome.report
