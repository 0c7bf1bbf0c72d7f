"""
Result Seal - Signature Schemes

Provides the Sign/Verify primitives used by the result signer, the field
verifier and the status chain:
- Digest scheme: symmetric "signed-by-<signer>:<sha256>" reference scheme
- X.509 scheme: ECDSA/Ed25519 signatures with the credential's private key,
  verified against the public key of the trusted certificate
- Canonical JSON hashing for reproducible status hashes
"""

import base64
import hashlib
import hmac
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed25519

from ..core.exceptions import SigningKeyMissingError

logger = logging.getLogger(__name__)

PrivateKey = Union[ec.EllipticCurvePrivateKey, ed25519.Ed25519PrivateKey]
PublicKey = Union[ec.EllipticCurvePublicKey, ed25519.Ed25519PublicKey]


def canonical_json(data: Any) -> bytes:
    """Encode data as compact JSON with sorted keys."""
    return json.dumps(data, sort_keys=True, separators=(',', ':')).encode('utf-8')


def compute_hash(data: Union[bytes, str, Dict[str, Any]]) -> str:
    """
    Compute SHA-256 hash of data.

    Dicts are hashed over their canonical JSON encoding.

    Returns:
        Hash string with algorithm prefix
    """
    if isinstance(data, dict):
        data = canonical_json(data)
    elif isinstance(data, str):
        data = data.encode('utf-8')

    return f"sha256:{hashlib.sha256(data).hexdigest()}"


class SignatureScheme(ABC):
    """Signs content on behalf of a named signer and verifies it later."""

    name = "abstract"

    @abstractmethod
    def sign(self, content: str, signer: str) -> str:
        """Sign content as signer, returning the encoded signature."""

    @abstractmethod
    def verify(self, content: str, signature: str, signer: str) -> bool:
        """Check that signature was produced over content by signer."""


class DigestSignatureScheme(SignatureScheme):
    """
    Reference scheme binding a SHA-256 digest to the signer's name.

    Carries no secret; it fixes who signs what without real cryptography.
    """

    name = "digest"

    def sign(self, content: str, signer: str) -> str:
        digest = hashlib.sha256(content.encode('utf-8')).hexdigest()
        return f"signed-by-{signer}:{digest}"

    def verify(self, content: str, signature: str, signer: str) -> bool:
        if not isinstance(signature, str):
            return False
        expected = self.sign(content, signer)
        return hmac.compare_digest(expected.encode('utf-8'), signature.encode('utf-8'))


class X509SignatureScheme(SignatureScheme):
    """
    Asymmetric scheme keyed by signer identity.

    Private keys are bound for the identities this process signs as;
    public keys come from the certificates trusted for each identity.
    """

    name = "x509"

    def __init__(self):
        self._signing_keys: Dict[str, PrivateKey] = {}
        self._public_keys: Dict[str, PublicKey] = {}

    @classmethod
    def from_credential(cls, credential: Any) -> "X509SignatureScheme":
        """Build a scheme that signs and verifies as the credential's identity."""
        scheme = cls()
        scheme.trust(credential.identity, credential.leaf)
        if credential.private_key is not None:
            scheme.bind(credential.identity, credential.private_key)
        return scheme

    def bind(self, signer: str, private_key: PrivateKey) -> None:
        """Bind a private key for signing as signer."""
        self._signing_keys[signer] = private_key
        self._public_keys.setdefault(signer, private_key.public_key())

    def trust(self, signer: str, key: Union[x509.Certificate, PublicKey]) -> None:
        """Trust a certificate or public key for signatures by signer."""
        if isinstance(key, x509.Certificate):
            key = key.public_key()
        if not isinstance(key, (ec.EllipticCurvePublicKey, ed25519.Ed25519PublicKey)):
            raise TypeError(f"Unsupported public key type: {type(key).__name__}")
        self._public_keys[signer] = key

    def sign(self, content: str, signer: str) -> str:
        private_key = self._signing_keys.get(signer)
        if private_key is None:
            raise SigningKeyMissingError(
                f"No signing key bound for {signer}",
                signer=signer,
            )

        data = content.encode('utf-8')
        if isinstance(private_key, ed25519.Ed25519PrivateKey):
            signature = private_key.sign(data)
        else:
            signature = private_key.sign(data, ec.ECDSA(hashes.SHA256()))

        return base64.b64encode(signature).decode('ascii')

    def verify(self, content: str, signature: str, signer: str) -> bool:
        public_key = self._public_keys.get(signer)
        if public_key is None:
            logger.debug(f"No trusted key for signer {signer}")
            return False

        try:
            sig_bytes = base64.b64decode(signature, validate=True)
        except (ValueError, TypeError):
            return False

        data = content.encode('utf-8')
        try:
            if isinstance(public_key, ed25519.Ed25519PublicKey):
                public_key.verify(sig_bytes, data)
            else:
                public_key.verify(sig_bytes, data, ec.ECDSA(hashes.SHA256()))
            return True
        except InvalidSignature:
            return False


__all__ = [
    "SignatureScheme",
    "DigestSignatureScheme",
    "X509SignatureScheme",
    "canonical_json",
    "compute_hash",
]
