"""
Result Seal - Signed Result Verification

Checks a signed field set before any of its results is trusted:
1. The manifest matches the declared result keys and is validly signed
2. The declared identity is the owner expected for the task instance
3. Every result carries a valid signature by that identity

All three checks are required. Failures are terminal for the call.
"""

import logging
from typing import List

from ..core.exceptions import (
    FieldSignatureInvalidError,
    FieldVerificationError,
    IdentityMismatchError,
    ManifestMismatchError,
)
from ..observability import SealMetrics
from ..results import (
    KEY_MANIFEST,
    MANIFEST_SEPARATOR,
    SignedFieldSet,
    build_manifest,
    signature_key,
)
from ..signing import SignatureScheme

logger = logging.getLogger(__name__)


class ResultVerifier:
    """Verifies signed field sets against an expected owner."""

    def __init__(self, scheme: SignatureScheme):
        self.scheme = scheme

    def verify(
        self,
        field_set: SignedFieldSet,
        expected_owner: str,
        fail_fast: bool = True,
    ) -> None:
        """
        Verify a signed field set.

        Args:
            field_set: Field set produced by a ResultSigner
            expected_owner: Identity the task instance was authorized as
            fail_fast: Stop at the first bad field signature; otherwise
                report every failing key

        Raises:
            ManifestMismatchError: Manifest missing, stale or badly signed
            IdentityMismatchError: Declared signer is not expected_owner
            FieldSignatureInvalidError: A result signature is missing or invalid
        """
        try:
            with SealMetrics.timed("verify_results"):
                self._verify(field_set, expected_owner, fail_fast)
        except FieldVerificationError as e:
            SealMetrics.results_verified(e.code)
            logger.warning(
                f"Result verification failed for {expected_owner}: {e.message}",
                extra={"identity": expected_owner, "error_code": e.code},
            )
            raise

        SealMetrics.results_verified("ok")
        logger.debug(f"Results verified for {expected_owner}", extra={"identity": expected_owner})

    def _verify(self, field_set: SignedFieldSet, expected_owner: str, fail_fast: bool) -> None:
        identity = field_set.identity
        plain_keys = field_set.plain_keys()

        # Step 1: manifest
        stored = field_set.manifest
        expected_manifest = build_manifest(plain_keys)
        if stored is None:
            raise ManifestMismatchError("No manifest found in results", expected=expected_manifest)
        ambiguous = [k for k in plain_keys if MANIFEST_SEPARATOR in k]
        if ambiguous:
            raise ManifestMismatchError(
                f"Result key may not contain '{MANIFEST_SEPARATOR}': {ambiguous[0]}",
                expected=expected_manifest,
                actual=stored,
            )
        if stored != expected_manifest:
            raise ManifestMismatchError(
                "Manifest does not match the declared result keys",
                expected=expected_manifest,
                actual=stored,
            )

        manifest_sig = field_set.get(signature_key(KEY_MANIFEST))
        if (
            identity is None
            or manifest_sig is None
            or not self.scheme.verify(stored, manifest_sig.value, identity)
        ):
            raise ManifestMismatchError(
                "Manifest signature could not be verified",
                expected=expected_manifest,
                actual=stored,
            )

        # Step 2: identity
        if identity != expected_owner:
            raise IdentityMismatchError(
                f"Results were signed by {identity}, expected {expected_owner}",
                expected=expected_owner,
                actual=identity,
            )

        # Step 3: per-field signatures
        failed: List[str] = []
        for key in plain_keys:
            sig = field_set.get(signature_key(key))
            value = field_set.get(key).value
            if sig is None or not self.scheme.verify(value, sig.value, identity):
                failed.append(key)
                if fail_fast:
                    break

        if failed:
            raise FieldSignatureInvalidError(
                f"Failed to verify field: {failed[0]}",
                key=failed[0],
                keys=failed,
            )


def verify_results(
    scheme: SignatureScheme,
    field_set: SignedFieldSet,
    expected_owner: str,
) -> None:
    """Verify a field set with a one-off verifier."""
    ResultVerifier(scheme).verify(field_set, expected_owner)


__all__ = [
    "ResultVerifier",
    "verify_results",
]
