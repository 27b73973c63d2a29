"""Command line entry point for kube-certgen."""

from __future__ import annotations

import argparse
import logging
import sys

from .cluster import DEFAULT_CREATION_TIMEOUT, DEFAULT_MAX_ATTEMPTS, DEFAULT_POLL_INTERVAL, DEFAULT_SIGNER_NAME
from .errors import CertgenError
from .keys import DEFAULT_KEY_BITS
from .orchestrator import DEFAULT_CA_SUBJECT, DEFAULT_OUT_DIR, IssuanceSettings, issue_certificate
from .self_signed import DEFAULT_CA_DAYS, DEFAULT_CRT_DAYS


logger = logging.getLogger(__name__)

DESCRIPTION = """
Generate a certificate suitable for use with a webhook admission controller,
either self-signed or signed by the cluster CA via the CertificateSigningRequest
API. Use self-signed certificates for demo purposes only.
"""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kube-certgen", description=DESCRIPTION)
    parser.add_argument("-s", "--service-name", help="Service name (required).")
    parser.add_argument("-n", "--namespace", default="default", help="Service namespace.")
    parser.add_argument("-o", "--out-dir", default=DEFAULT_OUT_DIR, help="Directory to save certificates in.")
    parser.add_argument(
        "-S",
        "--self-signed",
        action="store_true",
        help="Sign with a locally generated CA instead of the cluster CA.",
    )
    parser.add_argument(
        "--fqdn",
        default=None,
        help="Comma-separated DNS names for a self-signed certificate (default: derived from the service).",
    )
    parser.add_argument("--subject", default=None, help="Server CSR subject, e.g. /C=RU/O=Example/OU=k8s.")
    parser.add_argument("--ca-subject", default=DEFAULT_CA_SUBJECT, help="Subject of the self-signed CA.")
    parser.add_argument("--ca-days", type=int, default=DEFAULT_CA_DAYS, help="CA validity in days.")
    parser.add_argument("--crt-days", type=int, default=DEFAULT_CRT_DAYS, help="Certificate validity in days.")
    parser.add_argument("--key-bits", type=int, default=DEFAULT_KEY_BITS, help="RSA key size.")
    parser.add_argument("--signer-name", default=DEFAULT_SIGNER_NAME, help="Cluster signer for the CSR.")
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=DEFAULT_MAX_ATTEMPTS,
        help="How often to read the CSR for a signed certificate.",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=DEFAULT_POLL_INTERVAL,
        help="Seconds between reads of the CSR.",
    )
    parser.add_argument(
        "--creation-timeout",
        type=float,
        default=DEFAULT_CREATION_TIMEOUT,
        help="Seconds to wait for the created CSR to become readable (0 waits forever).",
    )
    parser.add_argument("--kubeconfig", default=None, help="Path to a kubeconfig file.")
    parser.add_argument("--context", default=None, help="Kubeconfig context to use.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def _settings_from_args(args: argparse.Namespace) -> IssuanceSettings:
    return IssuanceSettings(
        service_name=args.service_name,
        namespace=args.namespace,
        out_dir=args.out_dir,
        self_signed=args.self_signed,
        fqdns=args.fqdn,
        subject=args.subject,
        ca_subject=args.ca_subject,
        ca_days=args.ca_days,
        crt_days=args.crt_days,
        key_bits=args.key_bits,
        signer_name=args.signer_name,
        max_attempts=args.max_attempts,
        poll_interval=args.poll_interval,
        creation_timeout=args.creation_timeout or None,
        kubeconfig=args.kubeconfig,
        context=args.context,
    )


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.service_name:
        parser.print_usage(sys.stderr)
        logger.error("Service name is required")
        return 1
    if args.self_signed and not args.ca_subject:
        parser.print_usage(sys.stderr)
        logger.error("CA subject is required for self-signed certificates")
        return 1

    try:
        issue_certificate(_settings_from_args(args))
    except CertgenError as exc:
        logger.error(f"ERROR: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
