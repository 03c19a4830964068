"""Policy set loader for a directory of rule files."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from plan_gate.errors import PolicyLoadError
from plan_gate.policy.checks import CHECKS, build_predicate
from plan_gate.policy.models import PolicyFile
from plan_gate.policy.rules import PolicySet, Rule, Severity

RULE_FILE_SUFFIXES = (".yaml", ".yml", ".json")

logger = logging.getLogger(__name__)


def rule_files(directory: str | Path) -> list[Path]:
    policy_dir = Path(directory)
    if not policy_dir.is_dir():
        raise PolicyLoadError(f"Policy directory not found: {policy_dir}")
    try:
        entries = list(policy_dir.iterdir())
    except OSError as exc:
        raise PolicyLoadError(f"Policy directory could not be read: {exc}") from exc
    return sorted(
        path
        for path in entries
        if path.is_file() and path.suffix.lower() in RULE_FILE_SUFFIXES
    )


def load_policy_file(path: str | Path) -> PolicyFile:
    policy_path = Path(path)
    try:
        with policy_path.open("r", encoding="utf-8") as handle:
            if policy_path.suffix.lower() == ".json":
                data = json.load(handle)
            else:
                data = yaml.safe_load(handle) or {}
    except (OSError, UnicodeDecodeError, ValueError, yaml.YAMLError) as exc:
        raise PolicyLoadError(f"Failed to parse rule file: {exc}", source=policy_path.name) from exc
    if not isinstance(data, dict):
        raise PolicyLoadError("Rule file must contain a mapping", source=policy_path.name)
    try:
        return PolicyFile.from_yaml(data)
    except ValidationError as exc:
        raise PolicyLoadError(f"Invalid rule file: {exc}", source=policy_path.name) from exc


def load_policy_set(directory: str | Path) -> PolicySet:
    files = rule_files(directory)
    if not files:
        raise PolicyLoadError(f"No rule files found in {directory}")

    policy_set = PolicySet()
    for path in files:
        for definition in load_policy_file(path).rules:
            if definition.check not in CHECKS:
                raise PolicyLoadError(
                    f"Rule '{definition.id}' uses unknown check '{definition.check}' "
                    f"(available: {', '.join(sorted(CHECKS))})",
                    source=path.name,
                )
            severity = Severity(definition.severity)
            try:
                predicate = build_predicate(
                    definition.check, definition.params, definition.id, severity
                )
            except ValidationError as exc:
                raise PolicyLoadError(
                    f"Invalid params for rule '{definition.id}': {exc}", source=path.name
                ) from exc
            policy_set.add(
                Rule(
                    id=definition.id,
                    severity=severity,
                    predicate=predicate,
                    description=definition.description,
                    remediation=definition.remediation,
                    source=path.name,
                )
            )
        logger.debug("Loaded rule file %s", path.name)

    logger.info("Loaded %d rule(s) from %d file(s) in %s", len(policy_set), len(files), directory)
    return policy_set
