"""
Result Seal Configuration Management

Centralized configuration for identity acquisition, signing and the
status chain.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


class SignatureSchemeKind(Enum):
    """Available signature schemes."""
    DIGEST = "digest"
    X509 = "x509"


@dataclass
class IdentityConfig:
    """Workload identity endpoint configuration."""
    socket_path: Optional[str] = None
    initial_backoff_seconds: float = 2.0
    backoff_budget_seconds: float = 20.0
    fetch_timeout_seconds: float = 5.0
    svid_path: str = "/v1/x509svid"


@dataclass
class SigningConfig:
    """Signing configuration."""
    scheme: SignatureSchemeKind = SignatureSchemeKind.DIGEST
    controller_identity: str = "controller"


@dataclass
class StatusConfig:
    """Status chain annotation configuration."""
    annotation_prefix: str = "resultseal.dev"
    controller_marker: str = "CONTROLLER_SVID_DATA"


@dataclass
class Config:
    """
    Main configuration class for Result Seal.

    Aggregates all subsystem configurations.
    """
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    signing: SigningConfig = field(default_factory=SigningConfig)
    status: StatusConfig = field(default_factory=StatusConfig)

    # Operational settings
    log_level: str = "INFO"
    json_logs: bool = True
    metrics_enabled: bool = True

    @classmethod
    def from_file(cls, config_path: str) -> "Config":
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to configuration YAML file

        Returns:
            Populated Config object
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """
        Create configuration from dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            Populated Config object
        """
        config = cls()

        if "identity" in data:
            config.identity = IdentityConfig(**data["identity"])
        if "signing" in data:
            signing_data = data["signing"].copy()
            if "scheme" in signing_data:
                signing_data["scheme"] = SignatureSchemeKind(signing_data["scheme"])
            config.signing = SigningConfig(**signing_data)
        if "status" in data:
            config.status = StatusConfig(**data["status"])

        # Operational settings
        if "log_level" in data:
            config.log_level = data["log_level"]
        if "json_logs" in data:
            config.json_logs = data["json_logs"]
        if "metrics_enabled" in data:
            config.metrics_enabled = data["metrics_enabled"]

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "identity": {
                "socket_path": self.identity.socket_path,
                "initial_backoff_seconds": self.identity.initial_backoff_seconds,
                "backoff_budget_seconds": self.identity.backoff_budget_seconds,
                "fetch_timeout_seconds": self.identity.fetch_timeout_seconds,
                "svid_path": self.identity.svid_path,
            },
            "signing": {
                "scheme": self.signing.scheme.value,
                "controller_identity": self.signing.controller_identity,
            },
            "status": {
                "annotation_prefix": self.status.annotation_prefix,
                "controller_marker": self.status.controller_marker,
            },
            "log_level": self.log_level,
            "json_logs": self.json_logs,
            "metrics_enabled": self.metrics_enabled,
        }

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if self.identity.initial_backoff_seconds <= 0:
            errors.append("Initial backoff must be positive")

        if self.identity.backoff_budget_seconds < 0:
            errors.append("Backoff budget must be non-negative")

        if self.identity.fetch_timeout_seconds <= 0:
            errors.append("Fetch timeout must be positive")

        if not self.identity.svid_path.startswith("/"):
            errors.append("SVID path must start with '/'")

        if not self.signing.controller_identity:
            errors.append("Controller identity must not be empty")

        if not self.status.controller_marker:
            errors.append("Controller marker must not be empty")

        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"Unknown log level: {self.log_level}")

        return errors
