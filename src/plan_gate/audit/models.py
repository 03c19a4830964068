"""Data models for stored gate artifacts."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ArtifactRecord:
    artifact_id: str
    kind: str
    location: str
    checksum: str
    created_at: str
    plan_hash: str | None = None
