"""CLI entry point for defender-probe."""

import argparse
import asyncio
import getpass
import json
import logging
import sys
from typing import List, Optional

from ._types import Transport
from .config import ProbeSettings, load_settings
from .exceptions import ProbeError, UnreachableHost
from .models import Credentials
from .probe import probe_host_report

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONNECTION = 1
EXIT_UNREACHABLE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Query antimalware, security-product and firewall status of a Windows host"
    )
    parser.add_argument("host", nargs="?", default=None, help="Target host (default: this machine)")
    parser.add_argument("--username", "-u", help="Privileged account (DOMAIN\\user or user@domain)")
    parser.add_argument("--password", "-p", help="Password (prompted if omitted with --username)")
    parser.add_argument("--domain", "-d", default=None, help="Domain, if not part of --username")
    parser.add_argument("--hashes", default=None, help="NTLM hash LM:NT (DCOM only)")
    parser.add_argument("--ask-password", action="store_true", help="Always prompt for the password")
    parser.add_argument("--ping", action="store_true", help="Check reachability before connecting")
    parser.add_argument(
        "--transport",
        choices=[t.value for t in Transport],
        default=None,
        help="Remote management transport (default: dcom)",
    )
    parser.add_argument("--diagnostics", action="store_true", help="Include per-field outcomes")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return parser


def resolve_credentials(args: argparse.Namespace) -> Optional[Credentials]:
    """Credentials from arguments, prompting for the password when needed."""
    if not args.username:
        return None

    password = args.password
    if args.ask_password or (password is None and not args.hashes):
        password = getpass.getpass(f"Password for {args.username}: ")

    extra = {}
    if args.hashes:
        extra["nt_hash"] = args.hashes
    credentials = Credentials.from_principal(args.username, password or "", **extra)
    if args.domain:
        credentials = credentials.model_copy(update={"domain": args.domain})
    return credentials


async def run(args: argparse.Namespace, settings: ProbeSettings) -> int:
    credentials = resolve_credentials(args)
    transport = Transport.parse(args.transport) if args.transport else None

    try:
        report = await probe_host_report(
            host=args.host,
            credentials=credentials,
            check_reachability=args.ping,
            transport=transport,
            settings=settings,
        )
    except UnreachableHost as e:
        logger.error(f"Host unreachable: {e.host}")
        return EXIT_UNREACHABLE
    except ProbeError as e:
        logger.error(json.dumps(e.to_dict()))
        return EXIT_CONNECTION

    output = report.to_dict() if args.diagnostics else report.record.to_dict()
    print(json.dumps(output, indent=2))
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()

    logging.basicConfig(
        level=getattr(logging, args.log_level or settings.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )

    try:
        return asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
