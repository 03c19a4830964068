"""Storage for gate reports and verification results.

Every stored file gets an ``ArtifactRecord`` with its SHA-256 so a later job
can tell whether a report was altered after the gate produced it.
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterable
from pathlib import Path
from uuid import uuid4

from plan_gate.audit.models import ArtifactRecord
from plan_gate.utils.hashing import sha256_bytes
from plan_gate.utils.serialization import json_default
from plan_gate.utils.time import utc_now_iso


class ArtifactStore:
    def __init__(self, base_path: str | Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    def write_json(
        self,
        kind: str,
        payload: dict,
        prefix: str | None = None,
        plan_hash: str | None = None,
    ) -> ArtifactRecord:
        text = json.dumps(payload, ensure_ascii=True, indent=2, default=json_default)
        return self._store(kind, text.encode("utf-8"), ".json", prefix, plan_hash)

    def write_text(
        self,
        kind: str,
        text: str | Iterable[str],
        prefix: str | None = None,
        plan_hash: str | None = None,
    ) -> ArtifactRecord:
        """Store a plain-text artifact; a sequence of lines is joined with newlines."""
        if not isinstance(text, str):
            text = "".join(f"{line}\n" for line in text)
        return self._store(kind, text.encode("utf-8"), ".txt", prefix, plan_hash)

    def read_json(self, location: str) -> dict:
        with self._checked(location).open("r", encoding="utf-8") as handle:
            return json.load(handle)

    def read_text(self, location: str) -> str:
        return self._checked(location).read_text(encoding="utf-8")

    def _checked(self, location: str) -> Path:
        path = Path(location).resolve()
        # Locations come back from records that may have been edited by hand.
        if not path.is_relative_to(self._base.resolve()):
            raise ValueError(f"Path is outside base directory: {location}")
        return path

    def _store(
        self, kind: str, data: bytes, suffix: str, prefix: str | None, plan_hash: str | None
    ) -> ArtifactRecord:
        artifact_id = uuid4().hex
        name = f"{prefix}-{artifact_id}{suffix}" if prefix else f"{artifact_id}{suffix}"
        path = self._base / name
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
        return ArtifactRecord(
            artifact_id=artifact_id,
            kind=kind,
            location=str(path),
            checksum=sha256_bytes(data),
            created_at=utc_now_iso(),
            plan_hash=plan_hash,
        )
