"""
Result Seal Exception Hierarchy

Every failure carries a stable ``code`` naming the check that failed and,
where one exists, the underlying ``cause``. Callers branch on the exception
class or the code, never on the message text.
"""

from typing import Any, Dict, List, Optional


class ResultSealError(Exception):
    """Base exception for all Result Seal errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "RESULTSEAL_ERROR"
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary."""
        data = {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }
        if self.cause is not None:
            data["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return data


# Identity acquisition

class IdentityAcquisitionError(ResultSealError):
    """Base class for workload identity acquisition failures."""


class ConfigMissingError(IdentityAcquisitionError):
    """Raised when the identity endpoint has not been configured."""

    def __init__(self, message: str, setting: Optional[str] = None):
        super().__init__(
            message,
            code="CONFIG_MISSING",
            details={"setting": setting},
        )
        self.setting = setting


class IdentityFetchError(IdentityAcquisitionError):
    """Raised by a connection when a single fetch attempt fails."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message,
            code="IDENTITY_FETCH_FAILED",
            details={"endpoint": endpoint},
            cause=cause,
        )
        self.endpoint = endpoint


class CredentialTimeoutError(IdentityAcquisitionError):
    """Raised when no usable credential arrived within the retry budget."""

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        waited_seconds: float = 0.0,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message,
            code="CREDENTIAL_TIMEOUT",
            details={
                "attempts": attempts,
                "waited_seconds": waited_seconds,
            },
            cause=cause,
        )
        self.attempts = attempts
        self.waited_seconds = waited_seconds


# Result signing

class SigningError(ResultSealError):
    """Base class for result signing failures."""


class NoPermittedIdentityError(SigningError):
    """Raised when there is no identity available to sign with."""

    def __init__(self, message: str = "No permitted identity available to sign with"):
        super().__init__(message, code="NO_PERMITTED_IDENTITY")


class UnregisteredIdentityError(SigningError):
    """Raised when the signing identity has no registration entry."""

    def __init__(self, message: str, identity: Optional[str] = None):
        super().__init__(
            message,
            code="UNREGISTERED_IDENTITY",
            details={"identity": identity},
        )
        self.identity = identity


class ReservedKeyError(SigningError):
    """Raised when a result key collides with a protocol key."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(
            message,
            code="RESERVED_KEY",
            details={"key": key},
        )
        self.key = key


class SigningKeyMissingError(SigningError):
    """Raised when a signature scheme holds no private key for a signer."""

    def __init__(self, message: str, signer: Optional[str] = None):
        super().__init__(
            message,
            code="SIGNING_KEY_MISSING",
            details={"signer": signer},
        )
        self.signer = signer


class FieldSetFormatError(ResultSealError):
    """Raised when a field set is structurally malformed."""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message,
            code="FIELD_SET_FORMAT",
            details={"key": key},
            cause=cause,
        )
        self.key = key


class StatusRecordFormatError(ResultSealError):
    """Raised when a persisted status record is structurally malformed."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message,
            code="STATUS_RECORD_FORMAT",
            details={"field": field},
            cause=cause,
        )
        self.field = field


# Field verification

class FieldVerificationError(ResultSealError):
    """Base class for signed field set verification failures."""


class ManifestMismatchError(FieldVerificationError):
    """Raised when the manifest is missing, stale or not validly signed."""

    def __init__(
        self,
        message: str,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
    ):
        super().__init__(
            message,
            code="MANIFEST_MISMATCH",
            details={
                "expected": expected,
                "actual": actual,
            },
        )
        self.expected = expected
        self.actual = actual


class IdentityMismatchError(FieldVerificationError):
    """Raised when the declared signer is not the expected owner."""

    def __init__(
        self,
        message: str,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
    ):
        super().__init__(
            message,
            code="IDENTITY_MISMATCH",
            details={
                "expected": expected,
                "actual": actual,
            },
        )
        self.expected = expected
        self.actual = actual


class FieldSignatureInvalidError(FieldVerificationError):
    """Raised when a result field has a missing or invalid signature."""

    def __init__(
        self,
        message: str,
        key: str,
        keys: Optional[List[str]] = None,
    ):
        keys = keys or [key]
        super().__init__(
            message,
            code="FIELD_SIGNATURE_INVALID",
            details={
                "key": key,
                "keys": keys,
            },
        )
        self.key = key
        self.keys = keys


# Status chain

class StatusChainError(ResultSealError):
    """Base class for status chain verification failures."""


class NotVerifiedFlagSetError(StatusChainError):
    """Raised when the authority has explicitly withdrawn trust in a record."""

    def __init__(self, message: str, record: Optional[str] = None):
        super().__init__(
            message,
            code="NOT_VERIFIED_FLAG_SET",
            details={"record": record},
        )
        self.record = record


class OwnerMarkerMissingError(StatusChainError):
    """Raised when the controller identity marker is absent or wrong."""

    def __init__(
        self,
        message: str,
        record: Optional[str] = None,
        actual: Optional[str] = None,
    ):
        super().__init__(
            message,
            code="OWNER_MARKER_MISSING",
            details={
                "record": record,
                "actual": actual,
            },
        )
        self.record = record
        self.actual = actual


class SignatureInvalidError(StatusChainError):
    """Raised when the stored status hash signature does not verify."""

    def __init__(
        self,
        message: str,
        record: Optional[str] = None,
        signer: Optional[str] = None,
    ):
        super().__init__(
            message,
            code="SIGNATURE_INVALID",
            details={
                "record": record,
                "signer": signer,
            },
        )
        self.record = record
        self.signer = signer


class StatusHashMismatchError(StatusChainError):
    """Raised when the status changed after the controller's last signed write."""

    def __init__(
        self,
        message: str,
        record: Optional[str] = None,
        expected_hash: Optional[str] = None,
        actual_hash: Optional[str] = None,
    ):
        super().__init__(
            message,
            code="STATUS_HASH_MISMATCH",
            details={
                "record": record,
                "expected_hash": expected_hash,
                "actual_hash": actual_hash,
            },
        )
        self.record = record
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
