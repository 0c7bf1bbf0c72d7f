"""
Tests for the Result Seal CLI.
"""

import json
import logging

import pytest

from resultseal.cli import create_parser, main
from resultseal.results import QueueIdentitySource, ResultSigner
from resultseal.signing import DigestSignatureScheme


@pytest.fixture(autouse=True)
def restore_logging():
    """main() reconfigures the root logger; put the previous handlers back."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def record_file(tmp_path):
    path = tmp_path / "record.json"
    path.write_text(json.dumps({
        "namespace": "default",
        "name": "build-42",
        "status": {"phase": "Succeeded"},
        "volatile": {"message": "done"},
    }))
    return path


@pytest.fixture
def results_file(tmp_path, registry, identity):
    signer = ResultSigner(DigestSignatureScheme(), registry, QueueIdentitySource([identity]))
    path = tmp_path / "results.json"
    path.write_text(json.dumps(signer.sign({"digest": "sha256:abc"}).to_list()))
    return path


class TestCLI:
    """Tests for CLI commands."""

    def test_parser_requires_owner(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["verify-results", "results.json"])

    def test_version(self, capsys):
        assert main(["version"]) == 0
        assert "Result Seal v1.0.0" in capsys.readouterr().out

    def test_no_command(self):
        assert main([]) == 1

    def test_sign_then_verify_status(self, record_file, capsys):
        assert main(["sign-status", str(record_file)]) == 0

        stored = json.loads(record_file.read_text())
        assert stored["annotations"]["resultseal.dev/controller-svid"] == "CONTROLLER_SVID_DATA"

        assert main(["verify-status", str(record_file)]) == 0
        assert '"verified"' in capsys.readouterr().out

    def test_verify_tampered_status(self, record_file, capsys):
        main(["sign-status", str(record_file)])
        stored = json.loads(record_file.read_text())
        stored["status"]["phase"] = "Failed"
        record_file.write_text(json.dumps(stored))
        capsys.readouterr()

        assert main(["verify-status", str(record_file)]) == 1

        assert '"error": "STATUS_HASH_MISMATCH"' in capsys.readouterr().err

    def test_verify_results(self, results_file, identity, capsys):
        assert main(["verify-results", str(results_file), "--owner", identity]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["results"] == {"digest": "sha256:abc"}

    def test_verify_results_wrong_owner(self, results_file, capsys):
        assert main(["verify-results", str(results_file), "--owner", "/ns/default/taskrun/other"]) == 1

        assert '"error": "IDENTITY_MISMATCH"' in capsys.readouterr().err

    def test_verify_malformed_results(self, tmp_path, identity, capsys):
        path = tmp_path / "results.json"
        path.write_text(json.dumps([{"key": "a"}]))

        assert main(["verify-results", str(path), "--owner", identity]) == 1
        assert '"error": "FIELD_SET_FORMAT"' in capsys.readouterr().err

    def test_fetch_without_socket(self, capsys):
        assert main(["fetch"]) == 1
        assert '"error": "CONFIG_MISSING"' in capsys.readouterr().err

    def test_bad_config(self, tmp_path):
        assert main(["-c", str(tmp_path / "missing.yaml"), "version"]) == 1

    def test_verify_status_invalid_json(self, tmp_path, capsys):
        path = tmp_path / "record.json"
        path.write_text("{not json")

        assert main(["verify-status", str(path)]) == 1
        assert '"error": "INPUT_UNREADABLE"' in capsys.readouterr().err

    def test_verify_status_missing_file(self, tmp_path, capsys):
        assert main(["verify-status", str(tmp_path / "absent.json")]) == 1
        assert '"error": "INPUT_UNREADABLE"' in capsys.readouterr().err

    def test_sign_status_missing_namespace(self, tmp_path, capsys):
        path = tmp_path / "record.json"
        path.write_text(json.dumps({"name": "build-42"}))

        assert main(["sign-status", str(path)]) == 1
        assert '"error": "STATUS_RECORD_FORMAT"' in capsys.readouterr().err
        assert json.loads(path.read_text()) == {"name": "build-42"}

    def test_verify_status_numeric_hash(self, record_file, capsys):
        main(["sign-status", str(record_file)])
        stored = json.loads(record_file.read_text())
        stored["annotations"]["resultseal.dev/status-hash"] = 5
        record_file.write_text(json.dumps(stored))
        capsys.readouterr()

        assert main(["verify-status", str(record_file)]) == 1
        assert '"error": "SIGNATURE_INVALID"' in capsys.readouterr().err

    def test_verify_results_invalid_json(self, tmp_path, identity, capsys):
        path = tmp_path / "results.json"
        path.write_text("[")

        assert main(["verify-results", str(path), "--owner", identity]) == 1
        assert '"error": "INPUT_UNREADABLE"' in capsys.readouterr().err

    def test_metrics_file(self, results_file, identity, tmp_path):
        metrics_path = tmp_path / "resultseal.prom"

        assert main([
            "--metrics-file", str(metrics_path),
            "verify-results", str(results_file), "--owner", identity,
        ]) == 0

        exported = metrics_path.read_text()
        assert 'resultseal_results_verified_total{outcome="ok"} 1.0' in exported
        assert 'resultseal_operation_seconds_count{operation="verify_results"} 1' in exported
