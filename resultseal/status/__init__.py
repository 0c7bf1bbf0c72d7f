"""
Result Seal - Status Chain

Makes the controller's record of task status tamper-evident across its two
writers (the controller and the remote execution agent).

Every legitimate controller write rewrites three annotation slots together:
- the controller identity marker
- the status hash (SHA-256 over the canonical status fields)
- the controller's signature over that hash

Any later mutation of the status fields, by either writer, no longer
matches the stored hash. Verification is recomputed on every trusted read
and never cached.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ..core.config import Config
from ..core.exceptions import (
    NotVerifiedFlagSetError,
    OwnerMarkerMissingError,
    SignatureInvalidError,
    StatusChainError,
    StatusHashMismatchError,
    StatusRecordFormatError,
)
from ..observability import SealMetrics
from ..registry import task_identity
from ..signing import SignatureScheme, compute_hash

logger = logging.getLogger(__name__)

DEFAULT_ANNOTATION_PREFIX = "resultseal.dev"
CONTROLLER_MARKER = "CONTROLLER_SVID_DATA"
CONTROLLER_IDENTITY = "controller"
NOT_VERIFIED_VALUE = "yes"


class TrustState(Enum):
    """Trust status of a record as seen by the status chain."""
    UNSIGNED = "unsigned"
    VERIFIED = "verified"
    TAMPERED = "tampered"


@dataclass(frozen=True)
class StatusAnnotations:
    """Annotation keys holding the status chain slots."""
    prefix: str = DEFAULT_ANNOTATION_PREFIX

    @property
    def controller_svid(self) -> str:
        return f"{self.prefix}/controller-svid"

    @property
    def status_hash(self) -> str:
        return f"{self.prefix}/status-hash"

    @property
    def status_hash_sig(self) -> str:
        return f"{self.prefix}/status-hash-sig"

    @property
    def not_verified(self) -> str:
        return f"{self.prefix}/not-verified"


@dataclass
class StatusRecord:
    """
    The verifiable part of a task record.

    ``status`` holds the fields covered by the hash; ``volatile`` holds
    cosmetic fields (messages, timestamps) that may change freely.
    """
    namespace: str
    name: str
    status: Dict[str, Any] = field(default_factory=dict)
    volatile: Dict[str, Any] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)

    @property
    def identity(self) -> str:
        return task_identity(self.namespace, self.name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "namespace": self.namespace,
            "name": self.name,
            "status": self.status,
            "volatile": self.volatile,
            "annotations": self.annotations,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "StatusRecord":
        """
        Load a persisted record.

        Raises:
            StatusRecordFormatError: If a required field is missing or a
                field has the wrong type
        """
        if not isinstance(data, dict):
            raise StatusRecordFormatError("Status record must be a JSON object")

        for name in ("namespace", "name"):
            value = data.get(name)
            if not isinstance(value, str) or not value:
                raise StatusRecordFormatError(
                    f"Status record field '{name}' must be a non-empty string",
                    field=name,
                )

        sections = {}
        for name in ("status", "volatile", "annotations"):
            value = data.get(name) or {}
            if not isinstance(value, dict):
                raise StatusRecordFormatError(
                    f"Status record field '{name}' must be an object",
                    field=name,
                )
            sections[name] = dict(value)

        return cls(namespace=data["namespace"], name=data["name"], **sections)


def compute_status_hash(record: StatusRecord) -> str:
    """Deterministic hash of the record's status fields."""
    return compute_hash(record.status)


class StatusChainSigner:
    """Controller-side writer of the status chain slots."""

    def __init__(
        self,
        scheme: SignatureScheme,
        controller_identity: str = CONTROLLER_IDENTITY,
        marker: str = CONTROLLER_MARKER,
        annotations: Optional[StatusAnnotations] = None,
    ):
        self.scheme = scheme
        self.controller_identity = controller_identity
        self.marker = marker
        self.annotations = annotations or StatusAnnotations()

    @classmethod
    def from_config(cls, config: Config, scheme: SignatureScheme) -> "StatusChainSigner":
        return cls(
            scheme,
            controller_identity=config.signing.controller_identity,
            marker=config.status.controller_marker,
            annotations=StatusAnnotations(config.status.annotation_prefix),
        )

    def append(self, record: StatusRecord) -> str:
        """
        Record a legitimate controller write.

        Recomputes the status hash and rewrites marker, hash and
        signature in a single update.

        Returns:
            The new status hash
        """
        current_hash = compute_status_hash(record)
        signature = self.scheme.sign(current_hash, self.controller_identity)

        record.annotations.update({
            self.annotations.controller_svid: self.marker,
            self.annotations.status_hash: current_hash,
            self.annotations.status_hash_sig: signature,
        })

        logger.debug(
            f"Signed status of {record.identity}",
            extra={"task": record.identity},
        )
        return current_hash

    def mark_not_verified(self, record: StatusRecord) -> None:
        """Withdraw trust in the record until further notice."""
        record.annotations[self.annotations.not_verified] = NOT_VERIFIED_VALUE
        logger.warning(
            f"Marked {record.identity} as not verified",
            extra={"task": record.identity},
        )


class StatusChainVerifier:
    """Checks that a record's status is exactly what the controller last signed."""

    def __init__(
        self,
        scheme: SignatureScheme,
        controller_identity: str = CONTROLLER_IDENTITY,
        marker: str = CONTROLLER_MARKER,
        annotations: Optional[StatusAnnotations] = None,
    ):
        self.scheme = scheme
        self.controller_identity = controller_identity
        self.marker = marker
        self.annotations = annotations or StatusAnnotations()

    @classmethod
    def from_config(cls, config: Config, scheme: SignatureScheme) -> "StatusChainVerifier":
        return cls(
            scheme,
            controller_identity=config.signing.controller_identity,
            marker=config.status.controller_marker,
            annotations=StatusAnnotations(config.status.annotation_prefix),
        )

    def is_verified_flag(self, record: StatusRecord) -> bool:
        """False when the not-verified marker is present."""
        return self.annotations.not_verified not in record.annotations

    def verify(self, record: StatusRecord) -> None:
        """
        Verify the record's status chain.

        Raises:
            NotVerifiedFlagSetError: Trust was explicitly withdrawn
            OwnerMarkerMissingError: Controller marker absent or wrong
            SignatureInvalidError: Stored hash not signed by the controller
            StatusHashMismatchError: Status changed since the last signed write
        """
        try:
            with SealMetrics.timed("verify_status"):
                self._verify(record)
        except StatusChainError as e:
            SealMetrics.status_chain_checked(e.code)
            logger.warning(
                f"Status chain verification failed for {record.identity}: {e.message}",
                extra={"task": record.identity, "error_code": e.code},
            )
            raise

        SealMetrics.status_chain_checked("ok")

    def _verify(self, record: StatusRecord) -> None:
        annotations = record.annotations

        if not self.is_verified_flag(record):
            raise NotVerifiedFlagSetError(
                f"Annotation {self.annotations.not_verified} is set, record is not trusted",
                record=record.identity,
            )

        marker = annotations.get(self.annotations.controller_svid)
        if marker != self.marker:
            raise OwnerMarkerMissingError(
                "Controller SVID annotation missing",
                record=record.identity,
                actual=marker,
            )

        stored_hash = annotations.get(self.annotations.status_hash, "")
        stored_sig = annotations.get(self.annotations.status_hash_sig, "")
        # The signature covers the stored hash; a stale hash is caught below.
        if (
            not isinstance(stored_hash, str)
            or not isinstance(stored_sig, str)
            or not self.scheme.verify(stored_hash, stored_sig, self.controller_identity)
        ):
            raise SignatureInvalidError(
                "Status hash signature was not able to be verified",
                record=record.identity,
                signer=self.controller_identity,
            )

        current_hash = compute_status_hash(record)
        if current_hash != stored_hash:
            raise StatusHashMismatchError(
                "Current status hash and stored annotation hash do not match",
                record=record.identity,
                expected_hash=stored_hash,
                actual_hash=current_hash,
            )

    def state(self, record: StatusRecord) -> TrustState:
        """Current trust state, recomputed on every call."""
        slots = (
            self.annotations.controller_svid,
            self.annotations.status_hash,
            self.annotations.status_hash_sig,
            self.annotations.not_verified,
        )
        if not any(slot in record.annotations for slot in slots):
            return TrustState.UNSIGNED

        try:
            self._verify(record)
        except StatusChainError:
            return TrustState.TAMPERED
        return TrustState.VERIFIED


def verify_status_chain(scheme: SignatureScheme, record: StatusRecord) -> None:
    """Verify a record with default slot names and controller identity."""
    StatusChainVerifier(scheme).verify(record)


__all__ = [
    "TrustState",
    "StatusAnnotations",
    "StatusRecord",
    "StatusChainSigner",
    "StatusChainVerifier",
    "compute_status_hash",
    "verify_status_chain",
    "CONTROLLER_MARKER",
    "CONTROLLER_IDENTITY",
]
