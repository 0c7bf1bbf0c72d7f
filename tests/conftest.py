"""
Result Seal - Test Configuration

Repo root discovery so tests run from any location, plus shared key,
certificate and credential fixtures.
"""

import asyncio
import os
import subprocess
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID


def discover_repo_root() -> Path:
    """
    Discover the repository root.

    Priority:
    1. RESULTSEAL_REPO_ROOT environment variable
    2. Git rev-parse --show-toplevel
    3. Path traversal from conftest.py location
    """
    env_root = os.environ.get("RESULTSEAL_REPO_ROOT")
    if env_root:
        root = Path(env_root)
        if root.is_dir() and (root / "pyproject.toml").is_file():
            return root

    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
            check=True,
            cwd=Path(__file__).parent,
        )
        git_root = Path(result.stdout.strip())
        if git_root.is_dir() and (git_root / "pyproject.toml").is_file():
            return git_root
    except (subprocess.CalledProcessError, FileNotFoundError):
        pass

    current = Path(__file__).resolve().parent
    for _ in range(10):
        if (current / "pyproject.toml").is_file():
            return current
        parent = current.parent
        if parent == current:
            break
        current = parent

    raise RuntimeError(
        "Could not discover repo root. Set RESULTSEAL_REPO_ROOT environment variable "
        "or ensure tests are run from within the repository."
    )


REPO_ROOT = discover_repo_root()

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from resultseal.identity import Credential  # noqa: E402
from resultseal.observability import get_metrics  # noqa: E402
from resultseal.registry import InMemoryRegistry, task_identity  # noqa: E402
from resultseal.signing import DigestSignatureScheme  # noqa: E402

TRUST_DOMAIN = "example.org"


def make_certificate(spiffe_id: str, private_key, hours: int = 1) -> x509.Certificate:
    """Self-signed certificate carrying spiffe_id as its URI SAN."""
    name = x509.Name([x509.NameAttribute(NameOID.ORGANIZATION_NAME, "SPIRE")])
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + timedelta(hours=hours))
        .add_extension(
            x509.SubjectAlternativeName([x509.UniformResourceIdentifier(spiffe_id)]),
            critical=False,
        )
        .sign(private_key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def repo_root() -> Path:
    """Fixture providing the repository root path."""
    return REPO_ROOT


@pytest.fixture(autouse=True)
def reset_metrics():
    """Give every test a clean, enabled metrics collector."""
    metrics = get_metrics()
    metrics.reset()
    metrics.enabled = True
    yield metrics
    metrics.reset()


@pytest.fixture
def identity() -> str:
    return task_identity("default", "build-42")


@pytest.fixture
def registry(identity) -> InMemoryRegistry:
    return InMemoryRegistry([identity])


@pytest.fixture
def digest_scheme() -> DigestSignatureScheme:
    return DigestSignatureScheme()


@pytest.fixture
def ec_private_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def make_credential() -> Callable[..., Credential]:
    """Factory for credentials with a fresh EC key and self-signed certificate."""

    def _make(path: str, private_key=None, with_key: bool = True) -> Credential:
        private_key = private_key or ec.generate_private_key(ec.SECP256R1())
        spiffe_id = f"spiffe://{TRUST_DOMAIN}{path}"
        return Credential(
            spiffe_id=spiffe_id,
            certificates=[make_certificate(spiffe_id, private_key)],
            private_key=private_key if with_key else None,
        )

    return _make


@pytest.fixture
def credential(make_credential, identity) -> Credential:
    return make_credential(identity)


class FakeConnection:
    """Scripted workload API connection."""

    def __init__(self, responses=None, hang: bool = False, close_error: Optional[BaseException] = None):
        self.responses = list(responses or [])
        self.hang = hang
        self.close_error = close_error
        self.fetch_calls = 0
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    async def fetch(self):
        self.fetch_calls += 1
        if self.hang:
            await asyncio.sleep(3600)
        if not self.responses:
            raise ConnectionError("workload API unavailable")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self):
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error


class FakeConnector:
    """Connector handing out one FakeConnection and counting dials."""

    def __init__(self, connection: FakeConnection):
        self.connection = connection
        self.dials = 0

    async def __call__(self, config):
        self.dials += 1
        await asyncio.sleep(0)
        return self.connection


class RecordingSleep:
    """Sleep replacement recording requested delays without waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()
