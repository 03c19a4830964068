"""Rule file models."""

from __future__ import annotations

from string import Formatter
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _ensure_list(v: Any) -> list:
    """Convert None to empty list, pass through lists."""
    if v is None:
        return []
    return v


class RuleDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(pattern=r"^[A-Za-z0-9][A-Za-z0-9_.:-]*$", max_length=128)
    severity: Literal["deny", "warn"]
    check: str
    description: str = Field(default="")
    remediation: str | None = Field(default=None)
    params: dict[str, Any] = Field(default_factory=dict)

    @field_validator("params", mode="before")
    @classmethod
    def _validate_params(cls, v: Any) -> Any:
        if v is None:
            return {}
        return v


class PolicyFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: Literal[1] = Field(default=1)
    rules: list[RuleDefinition] = Field(default_factory=list)

    @field_validator("rules", mode="before")
    @classmethod
    def _validate_rules(cls, v: Any) -> list:
        return _ensure_list(v)

    @classmethod
    def from_yaml(cls, data: dict[str, object]) -> "PolicyFile":
        return cls.model_validate(data)


# Check parameter models. Defaults reproduce the reference policies.


class _CheckParams(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class PublicAccessBlockParams(_CheckParams):
    resource_types: tuple[str, ...] = ("aws_s3_bucket_public_access_block",)
    attributes: tuple[str, ...] = (
        "block_public_acls",
        "block_public_policy",
        "ignore_public_acls",
        "restrict_public_buckets",
    )


class MissingPublicAccessBlockParams(_CheckParams):
    bucket_types: tuple[str, ...] = ("aws_s3_bucket",)
    block_types: tuple[str, ...] = ("aws_s3_bucket_public_access_block",)


class OpenIngressParams(_CheckParams):
    sensitive_ports: tuple[int, ...] = (22, 3389)
    dangerous_cidrs: tuple[str, ...] = ("0.0.0.0/0", "::/0")
    group_types: tuple[str, ...] = ("aws_security_group",)
    rule_types: tuple[str, ...] = ("aws_security_group_rule",)
    ingress_rule_types: tuple[str, ...] = ("aws_vpc_security_group_ingress_rule",)

    @field_validator("sensitive_ports")
    @classmethod
    def _validate_ports(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        for port in v:
            if not 0 <= port <= 65535:
                raise ValueError(f"port {port} is outside 0-65535")
        return v


class IamWildcardParams(_CheckParams):
    resource_types: tuple[str, ...] = (
        "aws_iam_policy",
        "aws_iam_role_policy",
        "aws_iam_user_policy",
        "aws_iam_group_policy",
        "aws_iam_policy_document",
    )
    policy_attributes: tuple[str, ...] = ("policy", "json")


_VALUE_OPERATORS = frozenset({"equals", "not_equals", "in", "not_in"})
_MESSAGE_FIELDS = frozenset({"address", "attribute", "value", "type"})


class AttributeParams(_CheckParams):
    resource_types: tuple[str, ...] = Field(min_length=1)
    attribute: str = Field(min_length=1)
    operator: Literal["equals", "not_equals", "in", "not_in", "present", "absent"]
    value: Any = None
    message: str = Field(
        default="{type} '{address}' has {attribute} = {value}",
    )
    skip_delete: bool = Field(default=True)

    @field_validator("message")
    @classmethod
    def _validate_message(cls, v: str) -> str:
        names = {name for _, name, _, _ in Formatter().parse(v) if name is not None}
        unknown = names - _MESSAGE_FIELDS
        if unknown:
            raise ValueError(f"unknown message placeholder(s): {sorted(unknown)}")
        return v

    @model_validator(mode="after")
    def _validate_value(self) -> "AttributeParams":
        if self.operator in _VALUE_OPERATORS and self.value is None:
            raise ValueError(f"operator '{self.operator}' requires a value")
        if self.operator in ("in", "not_in") and not isinstance(self.value, (list, tuple)):
            raise ValueError(f"operator '{self.operator}' requires a list value")
        return self
