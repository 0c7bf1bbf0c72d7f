"""
Result Seal - Identity-Bound Integrity for Task Results

Signs the results of a sandboxed task execution under the task's own
short-lived workload identity, and lets the controlling authority verify
both the results and its own status record before trusting them.

Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "Result Seal Team"

from .core import Config
from .core.attestor import ResultAuthority, TaskAttestor
from .core.exceptions import (
    ResultSealError,
    IdentityAcquisitionError,
    SigningError,
    FieldVerificationError,
    StatusChainError,
)
from .identity import Credential, WorkloadIdentityClient
from .results import ResultField, ResultSigner, SignedFieldSet
from .status import StatusChainSigner, StatusChainVerifier, StatusRecord
from .verifier import ResultVerifier

__all__ = [
    "Config",
    "TaskAttestor",
    "ResultAuthority",
    "Credential",
    "WorkloadIdentityClient",
    "ResultField",
    "ResultSigner",
    "SignedFieldSet",
    "ResultVerifier",
    "StatusRecord",
    "StatusChainSigner",
    "StatusChainVerifier",
    "ResultSealError",
    "IdentityAcquisitionError",
    "SigningError",
    "FieldVerificationError",
    "StatusChainError",
]
