"""Signed artifact value and its bundle file form.

The bundle is a Sigstore-shaped JSON document so external tooling can read
the certificate and signature without this package::

    {
      "mediaType": "application/vnd.dev.sigstore.bundle+json;version=0.2",
      "verificationMaterial": {
        "x509CertificateChain": {"certificates": [{"rawBytes": "<b64 DER>"}]}
      },
      "messageSignature": {
        "messageDigest": {"algorithm": "SHA2_256", "digest": "<b64>"},
        "signature": "<b64>"
      },
      "signedAt": "2024-01-01T00:00:00+00:00"
    }

Bundles written by cosign (single ``certificate`` and a transparency log
``integratedTime`` instead of ``signedAt``) are accepted on read.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from plan_gate.errors import MalformedInput, SigningError
from plan_gate.integrity.hashing import DIGEST_ALGORITHM, digest_hex
from plan_gate.utils.serialization import b64decode, b64encode
from plan_gate.utils.time import parse_iso

BUNDLE_MEDIA_TYPE = "application/vnd.dev.sigstore.bundle+json;version=0.2"


@dataclass(frozen=True)
class SignedArtifact:
    artifact_hash: bytes
    signature: bytes
    certificate_chain: tuple[bytes, ...]
    signed_at: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "certificate_chain", tuple(self.certificate_chain))
        # Naive timestamps are taken as UTC, as in bundle parsing.
        signed_at = self.signed_at
        if signed_at.tzinfo is None:
            signed_at = signed_at.replace(tzinfo=timezone.utc)
        object.__setattr__(self, "signed_at", signed_at.astimezone(timezone.utc))

    @property
    def is_complete(self) -> bool:
        return bool(
            self.artifact_hash
            and self.signature
            and self.certificate_chain
            and all(self.certificate_chain)
        )

    @property
    def digest_hex(self) -> str:
        return digest_hex(self.artifact_hash)

    def to_bundle(self) -> dict[str, Any]:
        return {
            "mediaType": BUNDLE_MEDIA_TYPE,
            "verificationMaterial": {
                "x509CertificateChain": {
                    "certificates": [
                        {"rawBytes": b64encode(cert)} for cert in self.certificate_chain
                    ]
                }
            },
            "messageSignature": {
                "messageDigest": {
                    "algorithm": DIGEST_ALGORITHM,
                    "digest": b64encode(self.artifact_hash),
                },
                "signature": b64encode(self.signature),
            },
            "signedAt": self.signed_at.isoformat(),
        }

    @classmethod
    def from_bundle(cls, data: object) -> "SignedArtifact":
        if not isinstance(data, Mapping):
            raise MalformedInput("Signature bundle must be a JSON object")
        material = _mapping(data, "verificationMaterial")
        message = _mapping(data, "messageSignature")
        digest_info = _mapping(message, "messageDigest", "messageSignature.")

        algorithm = digest_info.get("algorithm")
        if algorithm != DIGEST_ALGORITHM:
            raise MalformedInput(
                f"Unsupported digest algorithm {algorithm!r}",
                path="messageSignature.messageDigest.algorithm",
            )
        return cls(
            artifact_hash=_b64_field(digest_info, "digest", "messageSignature.messageDigest."),
            signature=_b64_field(message, "signature", "messageSignature."),
            certificate_chain=_certificates(material),
            signed_at=_signed_at(data, material),
        )


def _mapping(data: Mapping[str, Any], key: str, prefix: str = "") -> Mapping[str, Any]:
    value = data.get(key)
    if not isinstance(value, Mapping):
        raise MalformedInput("Missing or invalid object", path=f"{prefix}{key}")
    return value


def _b64_field(data: Mapping[str, Any], key: str, prefix: str = "") -> bytes:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise MalformedInput("Missing base64 value", path=f"{prefix}{key}")
    try:
        return b64decode(value)
    except ValueError as exc:
        raise MalformedInput(f"Invalid base64: {exc}", path=f"{prefix}{key}") from exc


def _certificates(material: Mapping[str, Any]) -> tuple[bytes, ...]:
    chain = material.get("x509CertificateChain")
    if isinstance(chain, Mapping):
        entries = chain.get("certificates")
        path = "verificationMaterial.x509CertificateChain.certificates"
    elif isinstance(material.get("certificate"), Mapping):
        entries = [material["certificate"]]
        path = "verificationMaterial.certificate"
    else:
        raise MalformedInput("No certificate material", path="verificationMaterial")
    if not isinstance(entries, list) or not entries:
        raise MalformedInput("Certificate chain must be a non-empty list", path=path)
    certificates = []
    for pos, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            raise MalformedInput("Certificate entry must be an object", path=f"{path}[{pos}]")
        certificates.append(_b64_field(entry, "rawBytes", f"{path}[{pos}]."))
    return tuple(certificates)


def _signed_at(data: Mapping[str, Any], material: Mapping[str, Any]) -> datetime:
    value = data.get("signedAt")
    if isinstance(value, str):
        try:
            return parse_iso(value)
        except ValueError as exc:
            raise MalformedInput(f"Invalid timestamp: {exc}", path="signedAt") from exc
    entries = material.get("tlogEntries")
    if isinstance(entries, list) and entries and isinstance(entries[0], Mapping):
        integrated = entries[0].get("integratedTime")
        if isinstance(integrated, (str, int)) and str(integrated).isdigit():
            return datetime.fromtimestamp(int(integrated), tz=timezone.utc)
    raise MalformedInput("Bundle carries no signing time", path="signedAt")


def write_bundle(path: str | Path, signed: SignedArtifact) -> Path:
    """Persist ``signed`` atomically. Incomplete artifacts are never written."""
    if not signed.is_complete:
        raise SigningError("Refusing to persist an incomplete signed artifact")
    bundle_path = Path(path)
    bundle_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = bundle_path.with_name(f".{bundle_path.name}.tmp")
    data = json.dumps(signed.to_bundle(), indent=2, ensure_ascii=True).encode("utf-8")
    try:
        tmp_path.write_bytes(data)
        os.replace(tmp_path, bundle_path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    return bundle_path


def read_bundle(path: str | Path) -> SignedArtifact:
    bundle_path = Path(path)
    if not bundle_path.exists():
        raise FileNotFoundError(f"Signature bundle not found: {bundle_path}")
    try:
        with bundle_path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedInput(f"Bundle is not valid JSON: {exc}", path=str(bundle_path)) from exc
    return SignedArtifact.from_bundle(data)
