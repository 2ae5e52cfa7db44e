from __future__ import annotations

import argparse
import os
import sys
from typing import Sequence

from netprov import __version__
from netprov.logging import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="netprov", description="netprov CLI")
    parser.add_argument("--version", action="version", version=f"netprov {__version__}")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("NETPROV_LOG_LEVEL", "INFO"),
        help="Log level (default: INFO or NETPROV_LOG_LEVEL)",
    )
    parser.add_argument(
        "--log-format", choices=["json", "console"], default="json", help="Log rendering"
    )
    subparsers = parser.add_subparsers(dest="command")

    plan_parser = subparsers.add_parser(
        "plan", help="Preview the ordered resources without calling any API"
    )
    plan_parser.add_argument("--config", help="Path to stack file (default: ./netprov.yaml)")
    plan_parser.add_argument("--format", choices=["text", "json"], default="text",
                             help="Output format")
    plan_parser.add_argument("-v", "--verbose", action="store_true",
                             help="Show rendered attributes")

    up_parser = subparsers.add_parser("up", help="Provision and converge every resource")
    up_parser.add_argument("--config", help="Path to stack file (default: ./netprov.yaml)")
    up_parser.add_argument("--output", help="Write outputs to this file (.yaml or .json)")
    up_parser.add_argument("--format", choices=["text", "json"], default="text",
                           help="Output format")
    up_parser.add_argument("-v", "--verbose", action="store_true",
                           help="Show full error messages")

    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level.upper(), json_output=args.log_format == "json")

    if args.command == "plan":
        from netprov.cli.plan import plan_command

        sys.exit(plan_command(
            config_path=args.config,
            output_format=args.format,
            verbose=args.verbose,
        ))

    if args.command == "up":
        from netprov.cli.up import up_command

        sys.exit(up_command(
            config_path=args.config,
            outputs_path=args.output,
            output_format=args.format,
            verbose=args.verbose,
        ))

    parser.print_help()
    sys.exit(2)
