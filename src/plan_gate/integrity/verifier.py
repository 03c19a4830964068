"""Plan verification: hash, signature and signer identity."""

from __future__ import annotations

import hmac
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed

from plan_gate.errors import VerificationFailure
from plan_gate.integrity.bundle import SignedArtifact
from plan_gate.integrity.hashing import compute_hash, digest_hex
from plan_gate.integrity.identity import ExpectedIdentity, certificate_identity

logger = logging.getLogger(__name__)

NO_IDENTITY_PINNED = "no identity pinned"


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    hash_matches: bool
    signature_valid: bool
    identity_matches: bool
    reason: str | None = None

    @property
    def identity_pinned(self) -> bool:
        return self.reason != NO_IDENTITY_PINNED

    def to_dict(self) -> dict[str, object]:
        return {
            "valid": self.valid,
            "hash_matches": self.hash_matches,
            "signature_valid": self.signature_valid,
            "identity_matches": self.identity_matches,
            "reason": self.reason,
        }


def load_trusted_roots(path: str | Path) -> list[x509.Certificate]:
    with Path(path).open("rb") as handle:
        return x509.load_pem_x509_certificates(handle.read())


def _load_chain(chain: Sequence[bytes]) -> list[x509.Certificate]:
    if not chain:
        raise ValueError("empty certificate chain")
    return [x509.load_der_x509_certificate(der) for der in chain]


def _verify_digest_signature(cert: x509.Certificate, signature: bytes, digest: bytes) -> None:
    key = cert.public_key()
    algorithm = Prehashed(hashes.SHA256())
    if isinstance(key, ec.EllipticCurvePublicKey):
        key.verify(signature, digest, ec.ECDSA(algorithm))
    elif isinstance(key, rsa.RSAPublicKey):
        key.verify(signature, digest, padding.PKCS1v15(), algorithm)
    else:
        raise TypeError(f"unsupported signing key type {type(key).__name__}")


def _anchored(top: x509.Certificate, root: x509.Certificate) -> bool:
    if top.fingerprint(hashes.SHA256()) == root.fingerprint(hashes.SHA256()):
        return True
    try:
        top.verify_directly_issued_by(root)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True


def _check_signature(
    chain: list[x509.Certificate],
    signed: SignedArtifact,
    trusted_roots: Sequence[x509.Certificate],
) -> str | None:
    """Return None when signature and chain hold, otherwise the reason they do not."""
    try:
        _verify_digest_signature(chain[0], signed.signature, signed.artifact_hash)
    except (InvalidSignature, ValueError, TypeError):
        return "signature does not verify against the signing certificate"

    for child, parent in zip(chain, chain[1:]):
        try:
            child.verify_directly_issued_by(parent)
        except (ValueError, TypeError, InvalidSignature):
            return f"certificate chain broken at '{child.subject.rfc4514_string()}'"

    for cert in chain:
        if not cert.not_valid_before_utc <= signed.signed_at <= cert.not_valid_after_utc:
            return (
                f"certificate '{cert.subject.rfc4514_string()}' was not valid at "
                f"signing time {signed.signed_at.isoformat()}"
            )

    if trusted_roots and not any(_anchored(chain[-1], root) for root in trusted_roots):
        return "certificate chain does not end at a trusted root"
    return None


def verify(
    data: bytes,
    signed: SignedArtifact,
    expected: ExpectedIdentity | None = None,
    trusted_roots: Sequence[x509.Certificate] = (),
) -> VerificationResult:
    """Check plan bytes against a signed artifact. Never retried: a mismatch is final."""
    failures: list[str] = []

    actual = compute_hash(data)
    logger.info("Plan file hash (SHA256): %s", digest_hex(actual))
    hash_matches = hmac.compare_digest(actual, signed.artifact_hash)
    if not hash_matches:
        failures.append(
            f"artifact hash mismatch: signed {signed.digest_hex}, got {digest_hex(actual)}"
        )

    chain: list[x509.Certificate] = []
    try:
        chain = _load_chain(signed.certificate_chain)
    except ValueError as exc:
        signature_problem: str | None = f"certificate chain unreadable: {exc}"
    else:
        signature_problem = _check_signature(chain, signed, trusted_roots)
    signature_valid = signature_problem is None
    if signature_problem is not None:
        failures.append(signature_problem)

    if expected is None:
        identity_matches = True
        logger.warning(
            "No identity verification specified; accepting any signer. "
            "Set CERTIFICATE_IDENTITY and CERTIFICATE_OIDC_ISSUER to pin the signer."
        )
    elif not chain:
        identity_matches = False
        failures.append("identity could not be checked without a certificate")
    else:
        mismatch = expected.mismatch(certificate_identity(chain[0]))
        identity_matches = mismatch is None
        if mismatch is not None:
            failures.append(mismatch)

    valid = hash_matches and signature_valid and identity_matches
    if failures:
        reason: str | None = "; ".join(failures)
    elif expected is None:
        reason = NO_IDENTITY_PINNED
    else:
        reason = None

    if valid:
        logger.info("Signature verification passed for hash %s", signed.digest_hex)
    else:
        logger.error("Signature verification failed: %s", reason)
    return VerificationResult(
        valid=valid,
        hash_matches=hash_matches,
        signature_valid=signature_valid,
        identity_matches=identity_matches,
        reason=reason,
    )


def require_verified(result: VerificationResult) -> None:
    """Guard for the apply step. There is no override."""
    if not result.valid:
        raise VerificationFailure(result)
