"""
Result Seal - Registration Entries

Interface to the identity-issuing authority's registration entries, which
decide whether an identity may obtain a credential (and therefore sign).
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


def task_identity(namespace: str, name: str) -> str:
    """Identity path of one task execution instance."""
    return f"/ns/{namespace}/taskrun/{name}"


def identity_from_spiffe_id(spiffe_id: str) -> str:
    """
    Extract the identity path from a SPIFFE ID.

    ``spiffe://example.org/ns/default/taskrun/build`` yields
    ``/ns/default/taskrun/build``.
    """
    parsed = urlparse(spiffe_id)
    if parsed.scheme != "spiffe" or not parsed.netloc:
        raise ValueError(f"Not a SPIFFE ID: {spiffe_id}")
    return parsed.path or "/"


class RegistrationAuthority(ABC):
    """Registration interface owned by the identity-issuing authority."""

    @abstractmethod
    def entry_exists(self, identity: str) -> bool:
        """Whether identity may currently obtain a credential."""

    @abstractmethod
    def create_entry(self, identity: str, ttl_seconds: Optional[int] = None) -> None:
        """Permit identity to obtain a credential."""

    @abstractmethod
    def delete_entry(self, identity: str) -> None:
        """Withdraw the registration for identity."""


@dataclass
class RegistrationEntry:
    """A registration entry held by the in-memory authority."""
    identity: str
    created_at: datetime
    expires_at: Optional[datetime] = None

    def is_live(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at is None or now < self.expires_at


class InMemoryRegistry(RegistrationAuthority):
    """
    Process-local registration authority.

    Stands in for the external authority in tests and single-process
    deployments. Entries with a TTL stop existing once it elapses.
    """

    def __init__(self, identities: Optional[List[str]] = None):
        self._entries: Dict[str, RegistrationEntry] = {}
        self._lock = threading.RLock()

        for identity in identities or []:
            self.create_entry(identity)

    def entry_exists(self, identity: str) -> bool:
        with self._lock:
            entry = self._entries.get(identity)
            return entry is not None and entry.is_live()

    def create_entry(self, identity: str, ttl_seconds: Optional[int] = None) -> None:
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=ttl_seconds) if ttl_seconds else None

        with self._lock:
            self._entries[identity] = RegistrationEntry(
                identity=identity,
                created_at=now,
                expires_at=expires_at,
            )

        logger.debug(f"Created registration entry for {identity}")

    def delete_entry(self, identity: str) -> None:
        with self._lock:
            removed = self._entries.pop(identity, None)

        if removed is not None:
            logger.debug(f"Deleted registration entry for {identity}")

    def entries(self) -> List[str]:
        """Identities with a live entry."""
        with self._lock:
            return sorted(i for i, e in self._entries.items() if e.is_live())


__all__ = [
    "RegistrationAuthority",
    "RegistrationEntry",
    "InMemoryRegistry",
    "task_identity",
    "identity_from_spiffe_id",
]
