"""
Result Seal CLI

Command-line interface for fetching credentials and for signing and
verifying status records and result field sets.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import yaml

from .core import Config
from .core.exceptions import ResultSealError
from .identity import WorkloadIdentityClient
from .observability import get_metrics, setup_logging
from .results import SignedFieldSet
from .signing import DigestSignatureScheme
from .status import StatusChainSigner, StatusChainVerifier, StatusRecord
from .verifier import ResultVerifier


def load_config(config_path: Optional[str]) -> Config:
    """Load configuration from file or use defaults."""
    if config_path:
        return Config.from_file(config_path)
    return Config()


def _read_json(path: str) -> Any:
    try:
        with open(path) as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise ResultSealError(
            f"Could not read {path}",
            code="INPUT_UNREADABLE",
            details={"path": path},
            cause=e,
        ) from e


def _report_error(e: ResultSealError) -> int:
    logging.getLogger(__name__).error(f"{e.code}: {e.message}")
    print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
    return 1


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="resultseal",
        description="Result Seal - identity-bound integrity for task results",
    )

    parser.add_argument(
        "-c", "--config",
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: from config)",
    )
    parser.add_argument(
        "--metrics-file",
        default=None,
        help="Write Prometheus metrics to this file after the command",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    fetch_parser = subparsers.add_parser("fetch", help="Fetch the workload credential")
    fetch_parser.add_argument(
        "--socket",
        help="Workload API socket path (overrides config)",
    )

    sign_status_parser = subparsers.add_parser(
        "sign-status",
        help="Sign a status record as the controller (rewrites the file)",
    )
    sign_status_parser.add_argument("record", help="Path to status record JSON")

    verify_status_parser = subparsers.add_parser(
        "verify-status",
        help="Verify a status record's chain",
    )
    verify_status_parser.add_argument("record", help="Path to status record JSON")

    verify_results_parser = subparsers.add_parser(
        "verify-results",
        help="Verify a signed result field set",
    )
    verify_results_parser.add_argument("results", help="Path to field set JSON")
    verify_results_parser.add_argument(
        "--owner",
        required=True,
        help="Identity the results must be signed by",
    )

    subparsers.add_parser("version", help="Show version")

    return parser


async def cmd_fetch(args: argparse.Namespace, config: Config) -> int:
    """Fetch and describe the workload credential."""
    if args.socket:
        config.identity.socket_path = args.socket

    try:
        async with WorkloadIdentityClient(config.identity) as client:
            credential = await client.fetch_credential()
            print(json.dumps({
                "spiffe_id": credential.spiffe_id,
                "identity": credential.identity,
                "certificates": len(credential.certificates),
                "not_after": credential.not_after.isoformat(),
            }, indent=2))
        return 0

    except ResultSealError as e:
        return _report_error(e)


def cmd_sign_status(args: argparse.Namespace, config: Config) -> int:
    """Perform a controller write on a status record file."""
    try:
        record = StatusRecord.from_dict(_read_json(args.record))
    except ResultSealError as e:
        return _report_error(e)

    signer = StatusChainSigner.from_config(config, DigestSignatureScheme())
    status_hash = signer.append(record)

    Path(args.record).write_text(json.dumps(record.to_dict(), indent=2) + "\n")
    print(json.dumps({"record": record.identity, "status_hash": status_hash}, indent=2))
    return 0


def cmd_verify_status(args: argparse.Namespace, config: Config) -> int:
    """Verify a status record file."""
    verifier = StatusChainVerifier.from_config(config, DigestSignatureScheme())

    try:
        record = StatusRecord.from_dict(_read_json(args.record))
        verifier.verify(record)
    except ResultSealError as e:
        return _report_error(e)

    print(json.dumps({"record": record.identity, "state": "verified"}, indent=2))
    return 0


def cmd_verify_results(args: argparse.Namespace, config: Config) -> int:
    """Verify a signed field set file."""
    verifier = ResultVerifier(DigestSignatureScheme())

    try:
        field_set = SignedFieldSet.from_list(_read_json(args.results))
        verifier.verify(field_set, expected_owner=args.owner)
    except ResultSealError as e:
        return _report_error(e)

    print(json.dumps({
        "owner": args.owner,
        "state": "verified",
        "results": field_set.results(),
    }, indent=2))
    return 0


def cmd_version(args: argparse.Namespace, config: Config) -> int:
    """Show version."""
    from . import __version__
    print(f"Result Seal v{__version__}")
    return 0


async def async_main(args: argparse.Namespace, config: Config) -> int:
    """Dispatch a parsed command."""
    if args.command == "fetch":
        return await cmd_fetch(args, config)

    elif args.command == "sign-status":
        return cmd_sign_status(args, config)

    elif args.command == "verify-status":
        return cmd_verify_status(args, config)

    elif args.command == "verify-results":
        return cmd_verify_results(args, config)

    elif args.command == "version":
        return cmd_version(args, config)

    else:
        print("No command specified. Use --help for usage.")
        return 1


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except (OSError, ValueError, TypeError, yaml.YAMLError) as e:
        print(f"Failed to load config: {e}", file=sys.stderr)
        return 1

    log_level = "DEBUG" if args.verbose else (args.log_level or config.log_level)
    setup_logging(log_level, json_format=config.json_logs)
    get_metrics().enabled = config.metrics_enabled

    exit_code = asyncio.run(async_main(args, config))

    if args.metrics_file and config.metrics_enabled:
        try:
            get_metrics().write_textfile(args.metrics_file)
        except OSError as e:
            logging.getLogger(__name__).error(f"Could not write metrics to {args.metrics_file}: {e}")
            return 1

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
