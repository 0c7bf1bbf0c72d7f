"""
Tests for Result Seal Core Module
"""

import pytest

from resultseal.core.config import Config, SignatureSchemeKind
from resultseal.core.exceptions import (
    ResultSealError,
    ConfigMissingError,
    CredentialTimeoutError,
    FieldSignatureInvalidError,
    IdentityAcquisitionError,
    ManifestMismatchError,
    NoPermittedIdentityError,
    SigningError,
    StatusChainError,
    StatusHashMismatchError,
    UnregisteredIdentityError,
)


class TestConfig:
    """Tests for configuration management."""

    def test_default_config(self):
        """Test default configuration values."""
        config = Config()

        assert config.identity.socket_path is None
        assert config.identity.initial_backoff_seconds == 2.0
        assert config.identity.backoff_budget_seconds == 20.0
        assert config.signing.scheme == SignatureSchemeKind.DIGEST
        assert config.signing.controller_identity == "controller"
        assert config.status.annotation_prefix == "resultseal.dev"
        assert config.status.controller_marker == "CONTROLLER_SVID_DATA"
        assert config.validate() == []

    def test_config_from_dict(self):
        """Test configuration from dictionary."""
        data = {
            "identity": {
                "socket_path": "/run/spire/agent.sock",
                "initial_backoff_seconds": 0.5,
            },
            "signing": {"scheme": "x509"},
            "status": {"annotation_prefix": "chains.example.dev"},
            "log_level": "DEBUG",
            "json_logs": False,
        }

        config = Config.from_dict(data)

        assert config.identity.socket_path == "/run/spire/agent.sock"
        assert config.identity.initial_backoff_seconds == 0.5
        assert config.identity.backoff_budget_seconds == 20.0
        assert config.signing.scheme == SignatureSchemeKind.X509
        assert config.status.annotation_prefix == "chains.example.dev"
        assert config.log_level == "DEBUG"
        assert config.json_logs is False

    def test_config_from_file(self, tmp_path):
        """Test configuration from a YAML file."""
        path = tmp_path / "resultseal.yaml"
        path.write_text(
            "identity:\n"
            "  socket_path: /tmp/agent.sock\n"
            "  backoff_budget_seconds: 5\n"
            "metrics_enabled: false\n"
        )

        config = Config.from_file(str(path))

        assert config.identity.socket_path == "/tmp/agent.sock"
        assert config.identity.backoff_budget_seconds == 5
        assert config.metrics_enabled is False

    def test_config_from_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert Config.from_file(str(path)).to_dict() == Config().to_dict()

    def test_config_from_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config.from_file(str(tmp_path / "missing.yaml"))

    def test_config_round_trip(self):
        config = Config.from_dict({"signing": {"scheme": "x509", "controller_identity": "ctl"}})

        assert Config.from_dict(config.to_dict()).to_dict() == config.to_dict()

    def test_config_validation(self):
        """Test configuration validation."""
        config = Config()
        config.identity.initial_backoff_seconds = 0  # Invalid
        config.log_level = "LOUD"

        errors = config.validate()

        assert len(errors) == 2
        assert any("backoff" in e.lower() for e in errors)
        assert any("LOUD" in e for e in errors)


class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_base_exception(self):
        """Test base exception."""
        error = ResultSealError("Test error", code="TEST_ERROR")

        assert error.message == "Test error"
        assert error.code == "TEST_ERROR"
        assert error.to_dict()["error"] == "TEST_ERROR"
        assert "cause" not in error.to_dict()

    def test_categories(self):
        assert isinstance(ConfigMissingError("x"), IdentityAcquisitionError)
        assert isinstance(UnregisteredIdentityError("x"), SigningError)
        assert isinstance(StatusHashMismatchError("x"), StatusChainError)

    def test_credential_timeout_carries_cause(self):
        cause = ConnectionError("socket refused")
        error = CredentialTimeoutError("timed out", attempts=4, waited_seconds=14.0, cause=cause)

        data = error.to_dict()

        assert data["error"] == "CREDENTIAL_TIMEOUT"
        assert data["details"] == {"attempts": 4, "waited_seconds": 14.0}
        assert data["cause"] == "ConnectionError: socket refused"
        assert error.cause is cause

    def test_field_signature_invalid_names_key(self):
        error = FieldSignatureInvalidError("Failed to verify field: b", key="b", keys=["b"])

        assert error.key == "b"
        assert error.code == "FIELD_SIGNATURE_INVALID"

    def test_distinct_codes(self):
        codes = {
            NoPermittedIdentityError().code,
            UnregisteredIdentityError("x").code,
            ManifestMismatchError("x").code,
            StatusHashMismatchError("x").code,
        }

        assert len(codes) == 4
