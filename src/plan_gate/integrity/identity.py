"""Signer identity claims embedded in keyless-signing certificates."""

from __future__ import annotations

from dataclasses import dataclass

from cryptography import x509

# Fulcio OIDC issuer extensions: v2 holds a DER UTF8String, v1 the raw bytes.
OIDC_ISSUER_V2_OID = x509.ObjectIdentifier("1.3.6.1.4.1.57264.1.8")
OIDC_ISSUER_V1_OID = x509.ObjectIdentifier("1.3.6.1.4.1.57264.1.1")

_UTF8_STRING_TAG = 0x0C


@dataclass(frozen=True)
class IdentityContext:
    """Who is signing: identity (email or URI) plus the OIDC issuer."""

    identity: str
    issuer: str


@dataclass(frozen=True)
class ExpectedIdentity:
    """Identity pinning parameters for verification. Matching is exact."""

    identity: str | None = None
    issuer: str | None = None

    def __post_init__(self) -> None:
        if not self.identity and not self.issuer:
            raise ValueError("ExpectedIdentity needs an identity, an issuer, or both")

    def mismatch(self, claims: "CertificateIdentity") -> str | None:
        """Return a description of the first mismatch, or None when claims match."""
        if self.identity and self.identity not in claims.identities:
            found = ", ".join(claims.identities) or "<none>"
            return f"identity mismatch: expected '{self.identity}', certificate has {found}"
        if self.issuer and self.issuer != claims.issuer:
            return (
                f"issuer mismatch: expected '{self.issuer}', "
                f"certificate has '{claims.issuer or '<none>'}'"
            )
        return None


@dataclass(frozen=True)
class CertificateIdentity:
    identities: tuple[str, ...]
    issuer: str | None


def decode_der_utf8_string(raw: bytes) -> str:
    if len(raw) < 2 or raw[0] != _UTF8_STRING_TAG:
        raise ValueError("not a DER UTF8String")
    length = raw[1]
    offset = 2
    if length & 0x80:
        size = length & 0x7F
        if size == 0 or len(raw) < 2 + size:
            raise ValueError("truncated DER length")
        length = int.from_bytes(raw[2 : 2 + size], "big")
        offset = 2 + size
    if len(raw) != offset + length:
        raise ValueError("DER length does not match content")
    return raw[offset:].decode("utf-8")


def _oidc_issuer(cert: x509.Certificate) -> str | None:
    for oid in (OIDC_ISSUER_V2_OID, OIDC_ISSUER_V1_OID):
        try:
            extension = cert.extensions.get_extension_for_oid(oid)
        except x509.ExtensionNotFound:
            continue
        raw = getattr(extension.value, "value", None)
        if not isinstance(raw, bytes):
            return None
        try:
            if oid == OIDC_ISSUER_V2_OID:
                return decode_der_utf8_string(raw)
            return raw.decode("utf-8")
        except ValueError:
            return None
    return None


def certificate_identity(cert: x509.Certificate) -> CertificateIdentity:
    identities: list[str] = []
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        san = None
    if san is not None:
        identities.extend(san.get_values_for_type(x509.RFC822Name))
        identities.extend(san.get_values_for_type(x509.UniformResourceIdentifier))
    return CertificateIdentity(identities=tuple(identities), issuer=_oidc_issuer(cert))
