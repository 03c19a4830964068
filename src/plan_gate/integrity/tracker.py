"""Lifecycle of one plan artifact: UNSIGNED -> SIGNED -> VERIFIED | VERIFICATION_FAILED."""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum

from cryptography import x509

from plan_gate.errors import ArtifactStateError, VerificationFailure
from plan_gate.integrity import signer as _signer
from plan_gate.integrity import verifier as _verifier
from plan_gate.integrity.bundle import SignedArtifact
from plan_gate.integrity.hashing import compute_hash, digest_hex
from plan_gate.integrity.identity import ExpectedIdentity, IdentityContext
from plan_gate.integrity.verifier import VerificationResult


class ArtifactState(str, Enum):
    UNSIGNED = "unsigned"
    SIGNED = "signed"
    VERIFIED = "verified"
    VERIFICATION_FAILED = "verification_failed"


class PlanArtifact:
    def __init__(self, data: bytes, signed: SignedArtifact | None = None) -> None:
        self._data = bytes(data)
        self._digest = compute_hash(self._data)
        self._signed = signed
        self._result: VerificationResult | None = None
        self._state = ArtifactState.SIGNED if signed is not None else ArtifactState.UNSIGNED

    @property
    def state(self) -> ArtifactState:
        return self._state

    @property
    def digest(self) -> bytes:
        return self._digest

    @property
    def digest_hex(self) -> str:
        return digest_hex(self._digest)

    @property
    def signed(self) -> SignedArtifact | None:
        return self._signed

    @property
    def result(self) -> VerificationResult | None:
        return self._result

    def sign(self, identity: IdentityContext | None, signer: _signer.Signer) -> SignedArtifact:
        if self._state is not ArtifactState.UNSIGNED:
            raise ArtifactStateError(
                f"Cannot sign an artifact in state '{self._state.value}'; "
                "re-plan to produce a new artifact"
            )
        self._signed = _signer.sign(self._data, identity, signer)
        self._state = ArtifactState.SIGNED
        return self._signed

    def verify(
        self,
        expected: ExpectedIdentity | None = None,
        trusted_roots: Sequence[x509.Certificate] = (),
    ) -> VerificationResult:
        if self._state is ArtifactState.VERIFICATION_FAILED:
            raise VerificationFailure(
                self._result,
                "Plan verification already failed; re-plan and re-sign before retrying",
            )
        if self._state is not ArtifactState.SIGNED or self._signed is None:
            raise ArtifactStateError(f"Cannot verify an artifact in state '{self._state.value}'")
        result = _verifier.verify(self._data, self._signed, expected, trusted_roots)
        self._result = result
        self._state = (
            ArtifactState.VERIFIED if result.valid else ArtifactState.VERIFICATION_FAILED
        )
        return result

    def require_verified(self) -> None:
        if self._state is not ArtifactState.VERIFIED:
            raise VerificationFailure(
                self._result,
                f"Plan artifact is '{self._state.value}'; apply requires a verified plan",
            )
