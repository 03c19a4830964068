"""Built-in rule predicates.

Every check is a pure function ``(document, params) -> Iterator[Violation]``.
Checks never raise on odd resource shapes: anything that does not look like
the attribute a check expects simply does not match. The loader binds a
check to a rule id and severity to produce a ``Rule`` predicate.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, NamedTuple

from pydantic import BaseModel

from plan_gate.plan.models import ChangeDocument, ResourceChange, thaw
from plan_gate.policy.models import (
    AttributeParams,
    IamWildcardParams,
    MissingPublicAccessBlockParams,
    OpenIngressParams,
    PublicAccessBlockParams,
)
from plan_gate.policy.rules import Finding, Predicate, Severity

WILDCARD = "*"


class Violation(NamedTuple):
    address: str | None
    message: str


@dataclass(frozen=True)
class CheckSpec:
    name: str
    params_model: type[BaseModel]
    run: Callable[[ChangeDocument, Any], Iterator[Violation]]


def _is_sequence(value: object) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


# S3 public access block


def check_public_access_block(
    document: ChangeDocument, params: PublicAccessBlockParams
) -> Iterator[Violation]:
    for rc in document.of_type(*params.resource_types):
        after = rc.after
        if not isinstance(after, Mapping):
            continue
        bucket = after.get("bucket")
        target = f" (bucket {bucket})" if isinstance(bucket, str) and bucket else ""
        for attribute in params.attributes:
            if attribute in after and after[attribute] is False:
                yield Violation(
                    rc.address,
                    f"S3 public access block '{rc.address}'{target} must set "
                    f"{attribute} = true",
                )


def _block_covers(block: ResourceChange, bucket: ResourceChange) -> bool:
    target = block.after_attr("bucket")
    if isinstance(target, str) and target:
        for candidate in (bucket.after_attr("bucket"), bucket.after_attr("id")):
            if isinstance(candidate, str) and candidate == target:
                return True
        return target == bucket.address or target.startswith(bucket.address + ".")
    # Bucket still unknown at plan time: pair by name within the same module.
    return block.module_address == bucket.module_address and block.name == bucket.name


def check_missing_public_access_block(
    document: ChangeDocument, params: MissingPublicAccessBlockParams
) -> Iterator[Violation]:
    blocks = [rc for rc in document.of_type(*params.block_types) if not rc.is_delete_only]
    for bucket in document.of_type(*params.bucket_types):
        if bucket.is_delete_only:
            continue
        if not any(_block_covers(block, bucket) for block in blocks):
            yield Violation(
                bucket.address,
                f"S3 bucket '{bucket.address}' has no associated public access block",
            )


# Security group ingress


def _as_port(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _entry_cidrs(entry: Mapping[str, Any]) -> list[str]:
    cidrs: list[str] = []
    for key in ("cidr_blocks", "ipv6_cidr_blocks"):
        values = entry.get(key)
        if _is_sequence(values):
            cidrs.extend(v for v in values if isinstance(v, str))
    for key in ("cidr_ipv4", "cidr_ipv6"):
        value = entry.get(key)
        if isinstance(value, str):
            cidrs.append(value)
    return cidrs


def _open_ingress_entry(
    address: str, entry: Mapping[str, Any], params: OpenIngressParams
) -> Iterator[Violation]:
    from_port = _as_port(entry.get("from_port"))
    to_port = _as_port(entry.get("to_port"))
    if from_port is None or to_port is None:
        return
    ports = [port for port in params.sensitive_ports if from_port <= port <= to_port]
    if not ports:
        return
    dangerous: list[str] = []
    for cidr in _entry_cidrs(entry):
        if cidr in params.dangerous_cidrs and cidr not in dangerous:
            dangerous.append(cidr)
    for port in ports:
        for cidr in dangerous:
            yield Violation(
                address,
                f"Security group '{address}' allows ingress on port {port} from {cidr}",
            )


def check_open_ingress(document: ChangeDocument, params: OpenIngressParams) -> Iterator[Violation]:
    for rc in document:
        if rc.is_delete_only or not isinstance(rc.after, Mapping):
            continue
        if rc.type in params.group_types:
            entries = rc.after.get("ingress")
            if not _is_sequence(entries):
                continue
            for entry in entries:
                if isinstance(entry, Mapping):
                    yield from _open_ingress_entry(rc.address, entry, params)
        elif rc.type in params.rule_types:
            if rc.after.get("type") == "ingress":
                yield from _open_ingress_entry(rc.address, rc.after, params)
        elif rc.type in params.ingress_rule_types:
            yield from _open_ingress_entry(rc.address, rc.after, params)


# IAM wildcards


def _decode_policy(value: object) -> Mapping[str, Any] | None:
    if isinstance(value, Mapping):
        return value
    if isinstance(value, str) and value.strip():
        try:
            decoded = json.loads(value)
        except ValueError:
            return None
        if isinstance(decoded, Mapping):
            return decoded
    return None


def _policy_statements(rc: ResourceChange, params: IamWildcardParams) -> list[Any]:
    after = rc.after
    if not isinstance(after, Mapping):
        return []
    for attribute in params.policy_attributes:
        policy = _decode_policy(after.get(attribute))
        if policy is None:
            continue
        statements = policy.get("Statement")
        if isinstance(statements, Mapping):
            return [statements]
        if _is_sequence(statements):
            return list(statements)
        return []
    blocks = after.get("statement")
    if not _is_sequence(blocks):
        return []
    statements = []
    for block in blocks:
        if not isinstance(block, Mapping):
            continue
        statements.append(
            {
                "Sid": block.get("sid"),
                "Effect": block.get("effect") or "Allow",
                "Action": block.get("actions"),
                "Resource": block.get("resources"),
            }
        )
    return statements


def _has_wildcard(value: object) -> bool:
    if value == WILDCARD:
        return True
    return _is_sequence(value) and WILDCARD in value


def check_iam_wildcard(document: ChangeDocument, params: IamWildcardParams) -> Iterator[Violation]:
    for rc in document.of_type(*params.resource_types):
        if rc.is_delete_only:
            continue
        for pos, statement in enumerate(_policy_statements(rc, params)):
            if not isinstance(statement, Mapping):
                continue
            sid = statement.get("Sid")
            label = f"'{sid}'" if isinstance(sid, str) and sid else f"#{pos}"
            if _has_wildcard(statement.get("Action")):
                yield Violation(
                    rc.address,
                    f"IAM policy '{rc.address}' statement {label} uses wildcard "
                    f"Action '*'",
                )
            if statement.get("Effect") == "Allow" and _has_wildcard(statement.get("Resource")):
                yield Violation(
                    rc.address,
                    f"IAM policy '{rc.address}' statement {label} allows wildcard "
                    f"Resource '*'",
                )


# Generic attribute assertion

_MISSING = object()


def _lookup(state: Mapping[str, Any], path: str) -> Any:
    current: Any = state
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        elif _is_sequence(current) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else _MISSING
        else:
            return _MISSING
        if current is _MISSING:
            return _MISSING
    return current


def _attribute_matches(params: AttributeParams, found: bool, value: Any) -> bool:
    op = params.operator
    if op == "present":
        return found
    if op == "absent":
        return not found
    if not found:
        return False
    if op == "equals":
        return value == params.value
    if op == "not_equals":
        return value != params.value
    if op == "in":
        return value in params.value
    return value not in params.value


def check_attribute(document: ChangeDocument, params: AttributeParams) -> Iterator[Violation]:
    for rc in document.of_type(*params.resource_types):
        if params.skip_delete and rc.is_delete_only:
            continue
        if not isinstance(rc.after, Mapping):
            continue
        raw = _lookup(rc.after, params.attribute)
        found = raw is not _MISSING
        value = thaw(raw) if found else None
        if _attribute_matches(params, found, value):
            message = params.message.format_map(
                {
                    "address": rc.address,
                    "attribute": params.attribute,
                    "value": json.dumps(value) if found else "<absent>",
                    "type": rc.type,
                }
            )
            yield Violation(rc.address, message)


CHECKS: dict[str, CheckSpec] = {
    spec.name: spec
    for spec in (
        CheckSpec("public_access_block", PublicAccessBlockParams, check_public_access_block),
        CheckSpec(
            "missing_public_access_block",
            MissingPublicAccessBlockParams,
            check_missing_public_access_block,
        ),
        CheckSpec("open_ingress", OpenIngressParams, check_open_ingress),
        CheckSpec("iam_wildcard", IamWildcardParams, check_iam_wildcard),
        CheckSpec("attribute", AttributeParams, check_attribute),
    )
}


def build_predicate(
    check: str, params: Mapping[str, Any], rule_id: str, severity: Severity
) -> Predicate:
    """Bind a named check and its raw params to a rule.

    Raises ``KeyError`` for an unknown check and ``pydantic.ValidationError``
    for invalid params.
    """
    spec = CHECKS[check]
    validated = spec.params_model.model_validate(dict(params))

    def predicate(document: ChangeDocument) -> Iterable[Finding]:
        return [
            Finding(
                rule_id=rule_id,
                severity=severity,
                resource_address=violation.address,
                message=violation.message,
            )
            for violation in spec.run(document, validated)
        ]

    predicate.__name__ = f"{check}[{rule_id}]"
    return predicate
