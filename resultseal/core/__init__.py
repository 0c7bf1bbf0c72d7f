"""
Result Seal Core Module

Configuration and the exception taxonomy shared by every subsystem.
The orchestration layer lives in ``resultseal.core.attestor``.
"""

from .config import Config, IdentityConfig, SigningConfig, StatusConfig, SignatureSchemeKind
from .exceptions import (
    ResultSealError,
    IdentityAcquisitionError,
    SigningError,
    FieldVerificationError,
    StatusChainError,
)

__all__ = [
    "Config",
    "IdentityConfig",
    "SigningConfig",
    "StatusConfig",
    "SignatureSchemeKind",
    "ResultSealError",
    "IdentityAcquisitionError",
    "SigningError",
    "FieldVerificationError",
    "StatusChainError",
]
