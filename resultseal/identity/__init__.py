"""
Result Seal - Workload Identity Acquisition

Fetches the short-lived X.509 credential (SVID) a task executes under from
the local workload API endpoint.

Implements:
- Single, serialized dial per client instance
- Bounded fetch retry with a doubling backoff
- Cancellation that tears the connection down instead of leaving it open
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp
from cryptography import x509
from cryptography.hazmat.primitives import serialization

from ..core.config import IdentityConfig
from ..core.exceptions import (
    ConfigMissingError,
    CredentialTimeoutError,
    IdentityFetchError,
)
from ..observability import SealMetrics
from ..registry import identity_from_spiffe_id

logger = logging.getLogger(__name__)

# Failures worth another attempt; anything else propagates immediately.
RETRYABLE_ERRORS = (
    IdentityFetchError,
    aiohttp.ClientError,
    asyncio.TimeoutError,
    OSError,
    ValueError,
)


@dataclass
class Credential:
    """An X.509 SVID: certificate chain bound to one SPIFFE ID."""
    spiffe_id: str
    certificates: List[x509.Certificate] = field(default_factory=list)
    private_key: Optional[Any] = None

    @property
    def identity(self) -> str:
        return identity_from_spiffe_id(self.spiffe_id)

    @property
    def leaf(self) -> x509.Certificate:
        if not self.certificates:
            raise ValueError(f"Credential for {self.spiffe_id} has no certificates")
        return self.certificates[0]

    @property
    def not_before(self) -> datetime:
        return self.leaf.not_valid_before_utc

    @property
    def not_after(self) -> datetime:
        return self.leaf.not_valid_after_utc

    def is_usable(self) -> bool:
        """A credential is usable once it carries at least one certificate."""
        return len(self.certificates) > 0

    def remaining_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (self.not_after - now).total_seconds()

    @classmethod
    def from_pem(
        cls,
        spiffe_id: str,
        chain_pem: str,
        key_pem: Optional[str] = None,
    ) -> "Credential":
        """Parse a PEM certificate chain and optional PKCS#8 private key."""
        certificates: List[x509.Certificate] = []
        if chain_pem and chain_pem.strip():
            certificates = x509.load_pem_x509_certificates(chain_pem.encode('utf-8'))

        private_key = None
        if key_pem:
            private_key = serialization.load_pem_private_key(
                key_pem.encode('utf-8'),
                password=None,
            )

        return cls(spiffe_id=spiffe_id, certificates=certificates, private_key=private_key)


def parse_svid_response(payload: Dict[str, Any]) -> Credential:
    """
    Parse an X.509-SVID response document.

    Expected shape::

        {"svids": [{"spiffe_id": "...", "x509_svid": "<PEM chain>",
                    "x509_svid_key": "<PEM key>"}]}

    Only the first (default) SVID is used.
    """
    svids = payload.get("svids") or []
    if not svids:
        raise IdentityFetchError("Workload API response contained no SVIDs")

    svid = svids[0]
    spiffe_id = svid.get("spiffe_id")
    if not spiffe_id:
        raise ValueError("SVID entry is missing its spiffe_id")
    identity_from_spiffe_id(spiffe_id)

    return Credential.from_pem(
        spiffe_id=spiffe_id,
        chain_pem=svid.get("x509_svid", ""),
        key_pem=svid.get("x509_svid_key"),
    )


class WorkloadConnection(ABC):
    """An open connection to the workload API."""

    @abstractmethod
    async def fetch(self) -> Credential:
        """Fetch the current X.509 SVID."""

    @abstractmethod
    async def close(self) -> None:
        """Release the connection."""


class WorkloadAPIConnection(WorkloadConnection):
    """Workload API connection over a unix domain socket."""

    def __init__(self, config: IdentityConfig):
        self._socket_path = config.socket_path
        self._svid_path = config.svid_path
        self._session = aiohttp.ClientSession(
            connector=aiohttp.UnixConnector(path=config.socket_path),
            timeout=aiohttp.ClientTimeout(total=config.fetch_timeout_seconds),
        )

    async def fetch(self) -> Credential:
        url = f"http://localhost{self._svid_path}"
        async with self._session.get(url, headers={"workload.spiffe.io": "true"}) as resp:
            if resp.status != 200:
                error_text = await resp.text()
                raise IdentityFetchError(
                    f"Workload API returned status {resp.status}: {error_text}",
                    endpoint=self._socket_path,
                )
            payload = await resp.json()

        return parse_svid_response(payload)

    async def close(self) -> None:
        await self._session.close()


async def dial_workload_api(config: IdentityConfig) -> WorkloadConnection:
    """Default connector: open a workload API connection on the configured socket."""
    return WorkloadAPIConnection(config)


Connector = Callable[[IdentityConfig], Awaitable[WorkloadConnection]]


class WorkloadIdentityClient:
    """
    Workload identity client for one task execution.

    Owns exactly one workload API connection for its lifetime. Construct
    one instance per task execution and pass it to whatever needs the
    credential.
    """

    def __init__(
        self,
        config: IdentityConfig,
        connector: Optional[Connector] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the client.

        Args:
            config: Identity endpoint configuration
            connector: Coroutine opening a connection (default: unix socket dial)
            sleep: Coroutine used between fetch attempts
        """
        self.config = config
        self._connector = connector or dial_workload_api
        self._sleep = sleep
        self._connection: Optional[WorkloadConnection] = None
        self._credential: Optional[Credential] = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._connection is not None

    @property
    def credential(self) -> Optional[Credential]:
        """The most recently fetched credential, if any."""
        return self._credential

    async def setup(self) -> None:
        """
        Dial the workload API unless already connected.

        Raises:
            ConfigMissingError: If no socket path is configured
        """
        if not self.config.socket_path:
            raise ConfigMissingError(
                "Workload API socket path has not been configured",
                setting="identity.socket_path",
            )

        async with self._lock:
            if self._connection is None:
                await self._dial()

    async def _dial(self) -> None:
        try:
            self._connection = await self._connector(self.config)
        except (aiohttp.ClientError, OSError) as e:
            raise IdentityFetchError(
                "Workload API not initialized due to error",
                endpoint=self.config.socket_path,
                cause=e,
            ) from e

        logger.info(f"Connected to workload API at {self.config.socket_path}")

    async def fetch_credential(self) -> Credential:
        """
        Fetch a usable credential, retrying with a doubling backoff.

        Sleeps start at ``initial_backoff_seconds`` and double; retrying
        stops once the next sleep would take the cumulative wait past
        ``backoff_budget_seconds``.

        Returns:
            Credential with at least one certificate

        Raises:
            ConfigMissingError: If no socket path is configured
            CredentialTimeoutError: If the retry budget ran out
        """
        await self.setup()

        delay = self.config.initial_backoff_seconds
        budget = self.config.backoff_budget_seconds
        waited = 0.0
        attempts = 0
        last_error: Optional[BaseException] = None

        try:
            while True:
                attempts += 1
                try:
                    credential = await self._connection.fetch()
                    identity = credential.identity
                except RETRYABLE_ERRORS as e:
                    last_error = e
                    SealMetrics.credential_fetch_attempt("error")
                    logger.warning(
                        f"SVID fetch attempt {attempts} failed: {e}",
                        extra={"attempt": attempts},
                    )
                else:
                    if credential.is_usable():
                        self._credential = credential
                        SealMetrics.credential_fetch_attempt("ok")
                        SealMetrics.credential_ttl(credential.remaining_seconds())
                        logger.info(
                            f"Fetched SVID for {credential.spiffe_id}",
                            extra={"identity": identity, "attempt": attempts},
                        )
                        return credential

                    last_error = IdentityFetchError(
                        f"SVID for {credential.spiffe_id} carried no certificates",
                        endpoint=self.config.socket_path,
                    )
                    SealMetrics.credential_fetch_attempt("empty")

                if waited + delay > budget:
                    break

                await self._sleep(delay)
                waited += delay
                delay *= 2

        except asyncio.CancelledError:
            logger.info("SVID fetch cancelled, closing workload API connection")
            await self.close()
            raise

        raise CredentialTimeoutError(
            f"Requested SVID failed to get fetched and timed out after {attempts} attempts",
            attempts=attempts,
            waited_seconds=waited,
            cause=last_error,
        ) from last_error

    async def close(self) -> None:
        """
        Release the workload API connection.

        The handle is detached before closing, so a failing close cannot
        leave it attached; closing an unconnected client does nothing.
        """
        connection, self._connection = self._connection, None
        self._credential = None
        if connection is None:
            return

        await connection.close()
        logger.info("Workload API connection closed")

    async def __aenter__(self) -> "WorkloadIdentityClient":
        await self.setup()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


__all__ = [
    "Credential",
    "WorkloadConnection",
    "WorkloadAPIConnection",
    "WorkloadIdentityClient",
    "dial_workload_api",
    "parse_svid_response",
    "RETRYABLE_ERRORS",
]
