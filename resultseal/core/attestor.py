"""
Result Seal Orchestration

Wires the components together for the two parties of the protocol:
- TaskAttestor: runs next to the task, acquires its credential and signs
  its results
- ResultAuthority: the controller, which registers task identities, signs
  its status writes and verifies results before trusting them

Both are constructed per use and receive their collaborators explicitly.
"""

import logging
from typing import Dict, Optional

from ..identity import Credential, WorkloadIdentityClient
from ..registry import RegistrationAuthority
from ..results import CredentialIdentitySource, ResultSigner, ResultsInput, SignedFieldSet
from ..signing import DigestSignatureScheme, SignatureScheme, X509SignatureScheme
from ..status import StatusChainSigner, StatusChainVerifier, StatusRecord, TrustState
from ..verifier import ResultVerifier
from .config import Config, SignatureSchemeKind
from .exceptions import NoPermittedIdentityError

logger = logging.getLogger(__name__)


def build_scheme(config: Config, credential: Optional[Credential] = None) -> SignatureScheme:
    """Signature scheme selected by configuration."""
    if config.signing.scheme == SignatureSchemeKind.X509:
        if credential is None:
            raise ValueError("The x509 scheme needs a credential to sign with")
        return X509SignatureScheme.from_credential(credential)
    return DigestSignatureScheme()


class TaskAttestor:
    """
    Task-side attestation for one task execution.

    Usage::

        async with TaskAttestor(config, registry) as attestor:
            field_set = attestor.sign_results({"digest": "sha256:..."})
    """

    def __init__(
        self,
        config: Config,
        registry: RegistrationAuthority,
        client: Optional[WorkloadIdentityClient] = None,
        scheme: Optional[SignatureScheme] = None,
    ):
        self.config = config
        self.registry = registry
        self.client = client or WorkloadIdentityClient(config.identity)
        self._scheme = scheme
        self._signer: Optional[ResultSigner] = None

    async def start(self) -> Credential:
        """Acquire the task credential and prepare the signer."""
        credential = await self.client.fetch_credential()
        scheme = self._scheme or build_scheme(self.config, credential)
        self._signer = ResultSigner(scheme, self.registry, CredentialIdentitySource(self.client))

        logger.info(
            f"Task attestor ready as {credential.identity}",
            extra={"identity": credential.identity},
        )
        return credential

    def sign_results(self, results: ResultsInput) -> SignedFieldSet:
        """Sign results under the held credential's identity."""
        if self._signer is None:
            raise NoPermittedIdentityError("Task attestor has not been started")
        return self._signer.sign(results)

    async def stop(self) -> None:
        self._signer = None
        await self.client.close()

    async def __aenter__(self) -> "TaskAttestor":
        try:
            await self.start()
        except BaseException:
            await self.client.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()


class ResultAuthority:
    """
    Controller-side view of the protocol.

    Registers task identities before they run, signs every status write,
    and runs the status chain and field verification before handing out
    any result.
    """

    def __init__(
        self,
        config: Config,
        registry: RegistrationAuthority,
        scheme: SignatureScheme,
    ):
        self.config = config
        self.registry = registry
        self.scheme = scheme
        self.status_signer = StatusChainSigner.from_config(config, scheme)
        self.status_verifier = StatusChainVerifier.from_config(config, scheme)
        self.result_verifier = ResultVerifier(scheme)

    def admit(self, record: StatusRecord, ttl_seconds: Optional[int] = None) -> str:
        """
        Register the task identity and sign the initial status.

        Returns:
            The identity the task may sign as
        """
        identity = record.identity
        self.registry.create_entry(identity, ttl_seconds=ttl_seconds)
        self.record_status(record)
        logger.info(f"Admitted task {identity}", extra={"task": identity})
        return identity

    def record_status(self, record: StatusRecord) -> str:
        """Perform a legitimate controller status write."""
        return self.status_signer.append(record)

    def trust_state(self, record: StatusRecord) -> TrustState:
        return self.status_verifier.state(record)

    def accept_results(self, record: StatusRecord, field_set: SignedFieldSet) -> Dict[str, str]:
        """
        Verify the record and its results, then return the trusted values.

        Raises:
            StatusChainError: If the record's status chain does not hold
            FieldVerificationError: If the results do not verify for the task
        """
        self.status_verifier.verify(record)
        self.result_verifier.verify(field_set, expected_owner=record.identity)
        return field_set.results()

    def release(self, record: StatusRecord) -> None:
        """Delete the task's registration entry once it has finished."""
        self.registry.delete_entry(record.identity)
        logger.info(f"Released task {record.identity}", extra={"task": record.identity})
