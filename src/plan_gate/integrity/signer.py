"""Plan signing.

Cryptographic signing is delegated to a ``Signer``. In CI the signer is
backed by a short-lived certificate from a keyless-signing authority; this
package only requires that the signer hand back a signature over the plan
digest together with the certificate chain that vouches for the key.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed

from plan_gate.errors import SigningError
from plan_gate.integrity.bundle import SignedArtifact
from plan_gate.integrity.hashing import compute_hash, digest_hex
from plan_gate.integrity.identity import IdentityContext, certificate_identity
from plan_gate.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignerResult:
    signature: bytes
    certificate_chain: tuple[bytes, ...]


class Signer(Protocol):
    def sign_digest(self, digest: bytes, identity: IdentityContext) -> SignerResult: ...


class LocalKeySigner:
    """Signer backed by an in-process private key and its certificate chain."""

    def __init__(
        self,
        private_key: ec.EllipticCurvePrivateKey | rsa.RSAPrivateKey,
        certificate_chain: Sequence[x509.Certificate],
    ) -> None:
        if not isinstance(private_key, (ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey)):
            raise ValueError(f"Unsupported key type: {type(private_key).__name__}")
        if not certificate_chain:
            raise ValueError("Certificate chain must contain at least the signing certificate")
        leaf_key = certificate_chain[0].public_key()
        if _public_der(leaf_key) != _public_der(private_key.public_key()):
            raise ValueError("Private key does not match the signing certificate")
        self._key = private_key
        self._chain = tuple(certificate_chain)
        self._claims = certificate_identity(certificate_chain[0])

    @classmethod
    def from_pem(
        cls, key_pem: bytes, chain_pem: bytes, password: bytes | None = None
    ) -> "LocalKeySigner":
        key = serialization.load_pem_private_key(key_pem, password=password)
        return cls(key, x509.load_pem_x509_certificates(chain_pem))  # type: ignore[arg-type]

    def sign_digest(self, digest: bytes, identity: IdentityContext) -> SignerResult:
        if identity.identity not in self._claims.identities:
            raise SigningError(
                f"Signing certificate is not issued to '{identity.identity}'"
            )
        if self._claims.issuer is not None and identity.issuer != self._claims.issuer:
            raise SigningError(
                f"Signing certificate was issued by '{self._claims.issuer}', "
                f"not '{identity.issuer}'"
            )
        algorithm = Prehashed(hashes.SHA256())
        if isinstance(self._key, ec.EllipticCurvePrivateKey):
            signature = self._key.sign(digest, ec.ECDSA(algorithm))
        else:
            signature = self._key.sign(digest, padding.PKCS1v15(), algorithm)
        return SignerResult(
            signature=signature,
            certificate_chain=tuple(
                cert.public_bytes(serialization.Encoding.DER) for cert in self._chain
            ),
        )


def _public_der(key: object) -> bytes:
    return key.public_bytes(  # type: ignore[attr-defined]
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )


def sign(data: bytes, identity: IdentityContext | None, signer: Signer) -> SignedArtifact:
    """Sign plan bytes; digest, signature and chain are captured together or not at all."""
    if identity is None or not identity.identity or not identity.issuer:
        raise SigningError("No identity context available for signing")

    digest = compute_hash(data)
    logger.info("Plan file hash (SHA256): %s", digest_hex(digest))
    try:
        result = signer.sign_digest(digest, identity)
    except SigningError:
        raise
    except Exception as exc:
        raise SigningError(f"Signer failed: {type(exc).__name__}: {exc}") from exc

    if not isinstance(result, SignerResult):
        raise SigningError("Signer returned no result")
    signed = SignedArtifact(
        artifact_hash=digest,
        signature=result.signature or b"",
        certificate_chain=tuple(result.certificate_chain or ()),
        signed_at=utc_now(),
    )
    if not signed.is_complete:
        raise SigningError("Signer returned an incomplete signature or certificate chain")

    logger.info(
        "Plan signed as %s (issuer %s), hash %s",
        identity.identity,
        identity.issuer,
        signed.digest_hex,
    )
    return signed
