"""CLI entry point for the applicant qualification pipeline."""

from __future__ import annotations

import argparse
import logging
import sys

from applicant_qualifier.errors import ActionableError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="applicant-qualifier",
        description="Score uploaded resumes against a job and decide each candidate's stage",
    )
    parser.add_argument(
        "--settings",
        type=str,
        default="config/settings.toml",
        help="Path to settings.toml (default: config/settings.toml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show DEBUG output on stderr",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # -- qualify -------------------------------------------------------------
    qualify_p = sub.add_parser("qualify", help="Qualify a batch of resumes against one job")
    qualify_p.add_argument("--job", type=str, required=True, help="TOML file with a [job] table")
    qualify_p.add_argument(
        "--credits",
        type=int,
        required=True,
        metavar="N",
        help=(
            "cv_processing credits granted to the organization for this run; "
            "the balance starts fresh each run and the transaction journal "
            "is an audit log, not replayed"
        ),
    )
    qualify_p.add_argument("--org", type=str, default="local", help="Organization id (default: local)")
    qualify_p.add_argument("resumes", nargs="+", help="Resume files (.txt)")

    # -- check-config --------------------------------------------------------
    sub.add_parser("check-config", help="Validate settings.toml and exit")

    return parser


def main(argv: list[str] | None = None) -> int:
    from applicant_qualifier.cli import handle_check_config, handle_qualify
    from applicant_qualifier.logging import set_console_level

    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        set_console_level(logging.DEBUG)

    try:
        if args.command == "qualify":
            handle_qualify(args)
        elif args.command == "check-config":
            handle_check_config(args)
    except ActionableError as exc:
        print(f"Error: {exc.error}", file=sys.stderr)
        if exc.suggestion:
            print(f"Suggestion: {exc.suggestion}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
