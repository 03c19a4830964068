"""Change document loader for plan JSON produced by the provisioning engine."""

from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from plan_gate.errors import MalformedInput
from plan_gate.plan.models import ChangeAction, ChangeDocument, ResourceChange, freeze

_KNOWN_ACTIONS = {action.value: action for action in ChangeAction}
_CHANGE_KEYS = frozenset({"actions", "before", "after"})
_RESOURCE_KEYS = frozenset({"address", "type", "change"})


def load_change_document(path: str | Path) -> ChangeDocument:
    plan_path = Path(path)
    if not plan_path.exists():
        raise FileNotFoundError(f"Plan JSON not found: {plan_path}")
    try:
        with plan_path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedInput(f"Plan is not valid JSON: {exc}", path=str(plan_path)) from exc
    except OSError as exc:
        raise MalformedInput(f"Plan JSON could not be read: {exc}", path=str(plan_path)) from exc
    return parse_change_document(data)


def parse_change_document(data: object) -> ChangeDocument:
    if not isinstance(data, Mapping):
        raise MalformedInput("Plan document must be a JSON object")

    raw_changes = data.get("resource_changes")
    if raw_changes is None:
        raw_changes = []
    if not isinstance(raw_changes, list):
        raise MalformedInput("'resource_changes' must be a list", path="resource_changes")

    changes: list[ResourceChange] = []
    seen: set[str] = set()
    for pos, raw in enumerate(raw_changes):
        change = _parse_resource_change(raw, f"resource_changes[{pos}]")
        if change.address in seen:
            raise MalformedInput(
                f"Duplicate resource address '{change.address}'",
                path=f"resource_changes[{pos}].address",
            )
        seen.add(change.address)
        changes.append(change)

    metadata = {k: v for k, v in data.items() if k != "resource_changes"}
    return ChangeDocument(resource_changes=tuple(changes), metadata=freeze(metadata))


def _parse_resource_change(raw: object, path: str) -> ResourceChange:
    if not isinstance(raw, Mapping):
        raise MalformedInput("Resource change must be an object", path=path)

    address = raw.get("address")
    if not isinstance(address, str) or not address:
        raise MalformedInput("'address' must be a non-empty string", path=f"{path}.address")
    resource_type = raw.get("type")
    if not isinstance(resource_type, str) or not resource_type:
        raise MalformedInput("'type' must be a non-empty string", path=f"{path}.type")

    change = raw.get("change")
    if not isinstance(change, Mapping):
        raise MalformedInput("'change' must be an object", path=f"{path}.change")

    return ResourceChange(
        address=address,
        type=resource_type,
        actions=_parse_actions(change.get("actions"), f"{path}.change.actions"),
        before=_parse_state(change.get("before"), f"{path}.change.before"),
        after=_parse_state(change.get("after"), f"{path}.change.after"),
        extra=freeze({k: v for k, v in raw.items() if k not in _RESOURCE_KEYS}),
        change_extra=freeze({k: v for k, v in change.items() if k not in _CHANGE_KEYS}),
    )


def _parse_actions(value: object, path: str) -> tuple[ChangeAction, ...]:
    if not isinstance(value, list) or not value:
        raise MalformedInput("'actions' must be a non-empty list", path=path)
    actions: list[ChangeAction] = []
    for item in value:
        action = _KNOWN_ACTIONS.get(item) if isinstance(item, str) else None
        if action is None:
            raise MalformedInput(f"Unknown action {item!r}", path=path)
        if action in actions:
            raise MalformedInput(f"Repeated action {item!r}", path=path)
        actions.append(action)
    return tuple(actions)


def _parse_state(value: object, path: str) -> Any:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise MalformedInput("Resource state must be an object or null", path=path)
    return freeze(value)
