"""grpc-health-probe command line.

Usage:
    grpc-health-probe --addr=localhost:50051 [--service=NAME] [--tls ...]
    python -m grpc_health_probe --addr=localhost:50051

Prints one line describing the outcome and exits with:
    0  service is SERVING
    1  invalid arguments
    2  connection failure
    3  RPC failure (including unimplemented health service and timeout)
    4  service reported a non-SERVING status
"""

import argparse
import asyncio
import sys
from typing import Optional, Sequence

from . import __version__
from .config import (
    DEFAULT_CONNECT_TIMEOUT_MS,
    DEFAULT_RPC_TIMEOUT_MS,
    DEFAULT_USER_AGENT,
    ProbeConfig,
)
from .logging import setup_logging
from .outcome import ExitCode, HealthOutcome
from .probe import run_probe

EXIT_CODES_HELP = """exit codes:
  0  service is SERVING
  1  invalid arguments
  2  connection failure
  3  RPC failure (unimplemented health service, timeout, other errors)
  4  service reported a non-SERVING status
"""


class _ProbeArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that reports usage errors with the invalid-arguments code.

    Usage goes to stderr; the error itself is the single stdout line.
    """

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        print(f"error: {message}", flush=True)
        self.exit(ExitCode.INVALID_ARGUMENTS)


def build_parser() -> argparse.ArgumentParser:
    parser = _ProbeArgumentParser(
        prog="grpc-health-probe",
        description="Check the health of a gRPC server via grpc.health.v1.Health/Check",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EXIT_CODES_HELP,
    )
    parser.add_argument("--addr", required=True, help="(required) tcp host:port to connect")
    parser.add_argument("--service", default="", help="service name to check (default: \"\")")
    parser.add_argument(
        "--user-agent",
        default=DEFAULT_USER_AGENT,
        help="user-agent header value of health check requests",
    )
    parser.add_argument(
        "--connect-timeout",
        type=int,
        default=DEFAULT_CONNECT_TIMEOUT_MS,
        metavar="MS",
        help="timeout in milliseconds for establishing connection",
    )
    parser.add_argument(
        "--rpc-timeout",
        type=int,
        default=DEFAULT_RPC_TIMEOUT_MS,
        metavar="MS",
        help="timeout in milliseconds for health check rpc",
    )
    parser.add_argument(
        "--rpc-header",
        action="append",
        default=[],
        metavar="'KEY: VALUE'",
        help="additional metadata sent with the health check rpc (repeatable)",
    )

    tls = parser.add_argument_group("TLS")
    tls.add_argument("--tls", action="store_true", help="use TLS")
    tls.add_argument(
        "--tls-ca-cert",
        default=None,
        help="(with --tls, optional) file containing trusted certificates for verifying server",
    )
    tls.add_argument(
        "--tls-client-cert",
        default=None,
        help="(with --tls, optional) file containing client certificate for "
        "authenticating to the server (requires --tls-client-key)",
    )
    tls.add_argument(
        "--tls-client-key",
        default=None,
        help="(with --tls, optional) file containing client private key for "
        "authenticating to the server (requires --tls-client-cert)",
    )
    tls.add_argument(
        "--tls-server-name",
        default=None,
        help="(with --tls, optional) override the hostname used to verify the server certificate",
    )
    tls.add_argument(
        "--tls-no-verify",
        action="store_true",
        help="(with --tls) don't verify the server certificate (INSECURE)",
    )

    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging on stderr")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def config_from_args(args: argparse.Namespace) -> ProbeConfig:
    """Build a ProbeConfig from parsed arguments (not yet validated)."""
    return ProbeConfig(
        addr=args.addr,
        service=args.service,
        user_agent=args.user_agent,
        connect_timeout_ms=args.connect_timeout,
        rpc_timeout_ms=args.rpc_timeout,
        tls=args.tls,
        tls_ca_cert=args.tls_ca_cert,
        tls_client_cert=args.tls_client_cert,
        tls_client_key=args.tls_client_key,
        tls_server_name=args.tls_server_name,
        tls_no_verify=args.tls_no_verify,
        rpc_headers=tuple(args.rpc_header),
    )


def report(outcome: HealthOutcome) -> int:
    """Print the outcome line and return its exit code."""
    print(outcome.message(), flush=True)
    return int(outcome.exit_code)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)
    return report(asyncio.run(run_probe(config_from_args(args))))


if __name__ == "__main__":
    sys.exit(main())
