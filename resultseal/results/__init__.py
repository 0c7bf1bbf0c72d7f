"""
Result Seal - Result Signing

Signs the named results of one task execution as a verifiable unit:
- One ``<key>.sig`` signature per plain result
- An ``identity`` field naming the signer
- A ``manifest`` listing every plain result key (sorted), plus its own
  signature, so a removed or injected field is detectable
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Union

import jsonschema

from ..core.exceptions import (
    FieldSetFormatError,
    NoPermittedIdentityError,
    ReservedKeyError,
    UnregisteredIdentityError,
)
from ..observability import SealMetrics
from ..registry import RegistrationAuthority
from ..signing import SignatureScheme

logger = logging.getLogger(__name__)

KEY_IDENTITY = "identity"
KEY_MANIFEST = "manifest"
SIGNATURE_SUFFIX = ".sig"
MANIFEST_SEPARATOR = ","


class FieldKind(str, Enum):
    """Role of a field within a signed set."""
    PLAIN_RESULT = "PlainResult"
    SIGNATURE = "Signature"
    MANIFEST = "Manifest"
    IDENTITY = "Identity"


FIELD_SET_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "required": ["key", "value", "kind"],
        "properties": {
            "key": {"type": "string", "minLength": 1},
            "value": {"type": "string"},
            "kind": {"enum": [k.value for k in FieldKind]},
        },
        "additionalProperties": False,
    },
}


@dataclass(frozen=True)
class ResultField:
    """One named result value."""
    key: str
    value: str
    kind: FieldKind = FieldKind.PLAIN_RESULT

    def to_dict(self) -> Dict[str, str]:
        return {"key": self.key, "value": self.value, "kind": self.kind.value}


def is_reserved_key(key: str) -> bool:
    """Keys the signing protocol itself uses."""
    return key in (KEY_IDENTITY, KEY_MANIFEST) or key.endswith(SIGNATURE_SUFFIX)


def signature_key(key: str) -> str:
    return f"{key}{SIGNATURE_SUFFIX}"


def build_manifest(keys: Iterable[str]) -> str:
    """Manifest over result keys; independent of the order keys are given in."""
    return MANIFEST_SEPARATOR.join(sorted(keys))


class SignedFieldSet:
    """
    The complete output of one sign operation.

    Immutable; keys are unique. Order is preserved for persistence but
    carries no meaning for verification.
    """

    def __init__(self, fields: Iterable[ResultField]):
        self._fields = tuple(fields)
        self._by_key: Dict[str, ResultField] = {}
        for f in self._fields:
            if f.key in self._by_key:
                raise FieldSetFormatError(f"Duplicate field key: {f.key}", key=f.key)
            self._by_key[f.key] = f

    def __iter__(self) -> Iterator[ResultField]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def get(self, key: str) -> Optional[ResultField]:
        return self._by_key.get(key)

    def keys(self) -> List[str]:
        return [f.key for f in self._fields]

    def plain_keys(self) -> List[str]:
        """Declared plain result keys, sorted."""
        return sorted(
            f.key for f in self._fields
            if f.kind == FieldKind.PLAIN_RESULT and not is_reserved_key(f.key)
        )

    @property
    def identity(self) -> Optional[str]:
        f = self._by_key.get(KEY_IDENTITY)
        return f.value if f else None

    @property
    def manifest(self) -> Optional[str]:
        f = self._by_key.get(KEY_MANIFEST)
        return f.value if f else None

    def results(self) -> Dict[str, str]:
        """Plain result values by key."""
        return {k: self._by_key[k].value for k in self.plain_keys()}

    def without(self, key: str) -> "SignedFieldSet":
        """Copy of this set with one field removed."""
        return SignedFieldSet(f for f in self._fields if f.key != key)

    def replace(self, key: str, value: str) -> "SignedFieldSet":
        """Copy of this set with one field's value replaced."""
        return SignedFieldSet(
            ResultField(f.key, value, f.kind) if f.key == key else f
            for f in self._fields
        )

    def to_list(self) -> List[Dict[str, str]]:
        """Wire form: list of {key, value, kind} objects."""
        return [f.to_dict() for f in self._fields]

    @classmethod
    def from_list(cls, data: Any) -> "SignedFieldSet":
        """
        Load the wire form.

        Raises:
            FieldSetFormatError: If the document does not match the wire
                schema or repeats a key
        """
        try:
            jsonschema.validate(data, FIELD_SET_SCHEMA)
        except jsonschema.ValidationError as e:
            raise FieldSetFormatError(f"Invalid field set: {e.message}", cause=e) from e

        return cls(
            ResultField(key=item["key"], value=item["value"], kind=FieldKind(item["kind"]))
            for item in data
        )


class IdentitySource(ABC):
    """Supplies the identity a sign operation runs under."""

    @abstractmethod
    def next_identity(self) -> str:
        """Identity the next sign call runs as."""


class QueueIdentitySource(IdentitySource):
    """
    Hands out a fixed sequence of permitted identities, one per sign call.

    Used where no live credential exists, such as tests.
    """

    def __init__(self, identities: Optional[Iterable[str]] = None):
        self._queue = deque(identities or [])

    def push(self, identity: str) -> None:
        self._queue.append(identity)

    def next_identity(self) -> str:
        if not self._queue:
            raise NoPermittedIdentityError(
                "No permitted identities queued; push the task identity before signing"
            )
        return self._queue.popleft()


class CredentialIdentitySource(IdentitySource):
    """Signs as the identity of the credential currently held by a client."""

    def __init__(self, client: Any):
        self._client = client

    def next_identity(self) -> str:
        credential = self._client.credential
        if credential is None or not credential.is_usable():
            raise NoPermittedIdentityError("No live credential held; fetch one before signing")
        return credential.identity


ResultsInput = Union[Mapping[str, str], Sequence[ResultField]]


def _as_fields(results: ResultsInput) -> List[ResultField]:
    if isinstance(results, Mapping):
        return [ResultField(key=k, value=v) for k, v in results.items()]
    return list(results)


class ResultSigner:
    """
    Signs task results under a registered identity.

    Pure and local once an identity is available; never retries.
    """

    def __init__(
        self,
        scheme: SignatureScheme,
        registry: RegistrationAuthority,
        identities: IdentitySource,
    ):
        self.scheme = scheme
        self.registry = registry
        self.identities = identities

    def sign(self, results: ResultsInput) -> SignedFieldSet:
        """
        Sign a set of results.

        Only plain result fields are signed; other kinds are dropped.

        Args:
            results: Mapping of key to value, or a list of ResultFields

        Returns:
            SignedFieldSet covering every plain result

        Raises:
            NoPermittedIdentityError: If no identity is available
            UnregisteredIdentityError: If the identity has no registration entry
            ReservedKeyError: If a result key collides with a protocol key
            FieldSetFormatError: If a result key repeats or contains the
                manifest separator
        """
        with SealMetrics.timed("sign_results"):
            return self._sign(results)

    def _sign(self, results: ResultsInput) -> SignedFieldSet:
        identity = self.identities.next_identity()

        if not self.registry.entry_exists(identity):
            raise UnregisteredIdentityError(
                f"Entry doesn't exist for identity: {identity}",
                identity=identity,
            )

        plain: Dict[str, ResultField] = {}
        for f in _as_fields(results):
            if f.kind != FieldKind.PLAIN_RESULT:
                continue
            if is_reserved_key(f.key):
                raise ReservedKeyError(f"Result key is reserved: {f.key}", key=f.key)
            if MANIFEST_SEPARATOR in f.key:
                raise FieldSetFormatError(
                    f"Result key may not contain '{MANIFEST_SEPARATOR}': {f.key}",
                    key=f.key,
                )
            if f.key in plain:
                raise FieldSetFormatError(f"Duplicate result key: {f.key}", key=f.key)
            plain[f.key] = f

        keys = sorted(plain)
        manifest = build_manifest(keys)

        output = [plain[k] for k in keys]
        output.append(ResultField(KEY_IDENTITY, identity, FieldKind.IDENTITY))
        for k in keys:
            output.append(ResultField(
                signature_key(k),
                self.scheme.sign(plain[k].value, identity),
                FieldKind.SIGNATURE,
            ))
        output.append(ResultField(KEY_MANIFEST, manifest, FieldKind.MANIFEST))
        output.append(ResultField(
            signature_key(KEY_MANIFEST),
            self.scheme.sign(manifest, identity),
            FieldKind.SIGNATURE,
        ))

        SealMetrics.fields_signed(len(keys))
        logger.info(
            f"Signed {len(keys)} results as {identity}",
            extra={"identity": identity},
        )

        return SignedFieldSet(output)


__all__ = [
    "FieldKind",
    "ResultField",
    "SignedFieldSet",
    "IdentitySource",
    "QueueIdentitySource",
    "CredentialIdentitySource",
    "ResultSigner",
    "build_manifest",
    "is_reserved_key",
    "signature_key",
    "KEY_IDENTITY",
    "KEY_MANIFEST",
    "SIGNATURE_SUFFIX",
    "MANIFEST_SEPARATOR",
    "FIELD_SET_SCHEMA",
]
