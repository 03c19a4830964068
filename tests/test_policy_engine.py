from __future__ import annotations

import threading
from pathlib import Path

import pytest

from plan_gate.errors import PolicyEvaluationError, PolicyLoadError
from plan_gate.plan.models import ChangeDocument
from plan_gate.policy.engine import RuleEngine
from plan_gate.policy.loader import load_policy_set
from plan_gate.policy.rules import Finding, PolicySet, Rule, Severity

from plan_factories import change, document, iam_policy, ingress, security_group


def _per_resource_rule(rule_id: str, severity: Severity = Severity.DENY) -> Rule:
    def predicate(doc: ChangeDocument):
        # Report in reverse document order; the engine restores resource order.
        return [
            Finding(rule_id, severity, rc.address, f"{rule_id} saw {rc.address}")
            for rc in reversed(doc.resource_changes)
        ]

    return Rule(id=rule_id, severity=severity, predicate=predicate)


def _doc(count: int = 3) -> ChangeDocument:
    return document(
        *(change(f"aws_s3_bucket.b{i}", "aws_s3_bucket", {"bucket": f"b{i}"}) for i in range(count))
    )


def test_findings_ordered_by_rule_then_resource() -> None:
    policy_set = PolicySet([_per_resource_rule("second"), _per_resource_rule("first")])

    findings = RuleEngine(policy_set).evaluate(_doc(2))

    assert [(f.rule_id, f.resource_address) for f in findings] == [
        ("second", "aws_s3_bucket.b0"),
        ("second", "aws_s3_bucket.b1"),
        ("first", "aws_s3_bucket.b0"),
        ("first", "aws_s3_bucket.b1"),
    ]


def test_document_level_findings_sort_first() -> None:
    def predicate(doc: ChangeDocument):
        return [
            Finding("r", Severity.WARN, "aws_s3_bucket.b1", "resource"),
            Finding("r", Severity.WARN, None, "document"),
        ]

    findings = RuleEngine(PolicySet([Rule("r", Severity.WARN, predicate)])).evaluate(_doc(2))

    assert [f.message for f in findings] == ["document", "resource"]


def test_worker_count_does_not_change_output(policy_dir: Path) -> None:
    policy_set = load_policy_set(policy_dir)
    doc = document(
        security_group("aws_security_group.a", ingress(0, 65535, ["0.0.0.0/0"], ["::/0"])),
        iam_policy("aws_iam_policy.p", {"Effect": "Allow", "Action": "*", "Resource": "*"}),
        change("aws_s3_bucket.orphan", "aws_s3_bucket", {"bucket": "orphan"}),
        security_group("aws_security_group.b", ingress(22, 22, ["0.0.0.0/0"])),
    )

    serial = RuleEngine(policy_set, max_workers=1).evaluate(doc)
    parallel = RuleEngine(policy_set, max_workers=4).evaluate(doc)

    assert serial == parallel
    assert len(serial) == 8


def test_rules_run_concurrently() -> None:
    barrier = threading.Barrier(2, timeout=5)

    def waiting(rule_id: str) -> Rule:
        def predicate(doc: ChangeDocument):
            barrier.wait()
            return []

        return Rule(rule_id, Severity.DENY, predicate)

    engine = RuleEngine(PolicySet([waiting("a"), waiting("b")]), max_workers=2)

    assert engine.evaluate(_doc(1)) == []


def test_empty_policy_set() -> None:
    assert RuleEngine(PolicySet()).evaluate(_doc()) == []


def test_empty_document() -> None:
    assert RuleEngine(PolicySet([_per_resource_rule("r")])).evaluate(document()) == []


def test_evaluation_is_repeatable() -> None:
    engine = RuleEngine(PolicySet([_per_resource_rule("r")]), max_workers=2)
    doc = _doc()
    assert engine.evaluate(doc) == engine.evaluate(doc)


@pytest.mark.parametrize("workers", [0, 33])
def test_invalid_worker_count(workers: int) -> None:
    with pytest.raises(ValueError, match="max_workers"):
        RuleEngine(PolicySet(), max_workers=workers)


@pytest.mark.parametrize("workers", [1, 4])
def test_raising_predicate_aborts_evaluation(workers: int) -> None:
    def broken(doc: ChangeDocument):
        raise KeyError("after")

    policy_set = PolicySet([_per_resource_rule("ok"), Rule("broken", Severity.DENY, broken)])

    with pytest.raises(PolicyEvaluationError, match="Rule 'broken'") as excinfo:
        RuleEngine(policy_set, max_workers=workers).evaluate(_doc())
    assert excinfo.value.rule_id == "broken"
    assert isinstance(excinfo.value.__cause__, KeyError)


def test_non_finding_result_rejected() -> None:
    policy_set = PolicySet([Rule("bad", Severity.DENY, lambda doc: ["not a finding"])])

    with pytest.raises(PolicyEvaluationError, match="expected Finding"):
        RuleEngine(policy_set).evaluate(_doc())


def test_mis_tagged_finding_rejected() -> None:
    def predicate(doc: ChangeDocument):
        return [Finding("bad", Severity.WARN, None, "wrong severity")]

    with pytest.raises(PolicyEvaluationError, match="tagged 'bad'"):
        RuleEngine(PolicySet([Rule("bad", Severity.DENY, predicate)])).evaluate(_doc())


def test_policy_set_rejects_duplicates() -> None:
    policy_set = PolicySet([Rule("r", Severity.DENY, lambda doc: [], source="a.yaml")])

    with pytest.raises(PolicyLoadError, match="first defined in a.yaml"):
        policy_set.add(Rule("r", Severity.WARN, lambda doc: [], source="b.yaml"))
    assert len(policy_set) == 1
