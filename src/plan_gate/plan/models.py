"""Change document models."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from plan_gate.errors import MalformedInput


class ChangeAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "no-op"
    READ = "read"


_EMPTY: Mapping[str, Any] = MappingProxyType({})


def freeze(value: Any) -> Any:
    """Return a read-only copy of a decoded JSON value."""
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Convert a frozen value back into plain dicts and lists."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(item) for item in value]
    return value


@dataclass(frozen=True)
class ResourceChange:
    """One planned mutation to one resource.

    Attribute values are frozen on construction, and ``actions`` must be a
    non-empty set of known actions, whether the value comes from the loader
    or is built directly.
    """

    address: str
    type: str
    actions: tuple[ChangeAction, ...]
    before: Mapping[str, Any] | None = None
    after: Mapping[str, Any] | None = None
    extra: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    change_extra: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)

    def __post_init__(self) -> None:
        if not isinstance(self.address, str) or not self.address:
            raise MalformedInput("'address' must be a non-empty string", path="address")
        if not isinstance(self.type, str) or not self.type:
            raise MalformedInput("'type' must be a non-empty string", path=f"{self.address}.type")
        object.__setattr__(self, "actions", _coerce_actions(self.actions, self.address))
        for name in ("before", "after"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, Mapping):
                raise MalformedInput(
                    "Resource state must be an object or null", path=f"{self.address}.{name}"
                )
            object.__setattr__(self, name, freeze(value))
        object.__setattr__(self, "extra", freeze(self.extra))
        object.__setattr__(self, "change_extra", freeze(self.change_extra))

    @property
    def name(self) -> str:
        value = self.extra.get("name")
        if isinstance(value, str):
            return value
        # Fall back to the last address segment, without any index suffix.
        tail = self.address.rsplit(".", 1)[-1]
        return tail.split("[", 1)[0]

    @property
    def module_address(self) -> str:
        """Module path of the resource, ``""`` for the root module."""
        value = self.extra.get("module_address")
        if isinstance(value, str):
            return value
        parts = self.address.split(".")
        module: list[str] = []
        while len(parts) > 2 and parts[0] == "module":
            module.extend(parts[:2])
            parts = parts[2:]
        return ".".join(module)

    @property
    def is_delete_only(self) -> bool:
        return all(action is ChangeAction.DELETE for action in self.actions)

    def after_attr(self, key: str, default: Any = None) -> Any:
        if self.after is None:
            return default
        return self.after.get(key, default)


def _coerce_actions(value: object, address: str) -> tuple[ChangeAction, ...]:
    path = f"{address}.actions"
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple)) or not value:
        raise MalformedInput("'actions' must be a non-empty list", path=path)
    actions: list[ChangeAction] = []
    for item in value:
        try:
            action = ChangeAction(item)
        except ValueError:
            raise MalformedInput(f"Unknown action {item!r}", path=path) from None
        if action in actions:
            raise MalformedInput(f"Repeated action {item!r}", path=path)
        actions.append(action)
    return tuple(actions)


@dataclass(frozen=True)
class ChangeDocument:
    """The full proposed change set of one planning run."""

    resource_changes: tuple[ResourceChange, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)

    def __post_init__(self) -> None:
        changes = tuple(self.resource_changes)
        index: dict[str, int] = {}
        for pos, rc in enumerate(changes):
            if not isinstance(rc, ResourceChange):
                raise MalformedInput(
                    f"expected ResourceChange, got {type(rc).__name__}",
                    path=f"resource_changes[{pos}]",
                )
            if rc.address in index:
                raise MalformedInput(
                    f"Duplicate resource address '{rc.address}'",
                    path=f"resource_changes[{pos}].address",
                )
            index[rc.address] = pos
        object.__setattr__(self, "resource_changes", changes)
        object.__setattr__(self, "metadata", freeze(self.metadata))
        object.__setattr__(self, "_index", MappingProxyType(index))

    def __iter__(self) -> Iterator[ResourceChange]:
        return iter(self.resource_changes)

    def __len__(self) -> int:
        return len(self.resource_changes)

    def position(self, address: str | None) -> int:
        """Return the document order of ``address``; -1 when unknown or None."""
        if address is None:
            return -1
        return self._index.get(address, -1)  # type: ignore[attr-defined]

    def get(self, address: str) -> ResourceChange | None:
        pos = self.position(address)
        return self.resource_changes[pos] if pos >= 0 else None

    def of_type(self, *types: str) -> Iterator[ResourceChange]:
        wanted = set(types)
        return (rc for rc in self.resource_changes if rc.type in wanted)
