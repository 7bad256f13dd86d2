from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from session_assistant.app.headless_mic import HeadlessMicRunner
from session_assistant.app.headless_stdin import HeadlessStdinRunner
from session_assistant.app.logging_setup import configure_logging
from session_assistant.config.paths import default_log_dir, default_settings_path
from session_assistant.config.settings import AppSettings, load_settings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="session-assistant")
    parser.add_argument("--version", action="store_true", help="Print version and exit")

    parser.add_argument(
        "--config",
        type=Path,
        default=default_settings_path(),
        help="Path to settings JSON (default: user config dir)",
    )
    parser.add_argument(
        "--no-log-file",
        action="store_true",
        help="Log to the console only",
    )

    sub = parser.add_subparsers(dest="command")

    mic = sub.add_parser("run-mic", help="Run a live session from the microphone")
    _add_session_arguments(mic)
    mic.add_argument("--plan", default=None, help="Lesson plan id to link to every draft")

    stdin = sub.add_parser(
        "run-stdin", help="Replay inbound live messages (JSON lines) from stdin"
    )
    _add_session_arguments(stdin)

    return parser


def _add_session_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--roster", type=Path, required=True, help="Roster JSON file")
    parser.add_argument(
        "--subjects",
        default="",
        help="Comma-separated subject ids for the group (default: whole roster)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="JSON file that finalized records are appended to",
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from . import __version__

        print(__version__)
        return 0

    if args.command is None:
        parser.print_help()
        return 2

    try:
        settings = _load_settings_or_default(args.config)
    except (OSError, ValueError) as exc:
        print(f"Error: invalid settings file {args.config}: {exc}", flush=True)
        return 2

    configure_logging(settings.logging, log_dir=None if args.no_log_file else default_log_dir())
    subject_ids = [s.strip() for s in args.subjects.split(",") if s.strip()]

    if args.command == "run-stdin":
        runner = HeadlessStdinRunner(
            settings=settings,
            roster_path=args.roster,
            subject_ids=subject_ids,
            output_path=args.output,
        )
        return asyncio.run(runner.run())

    if args.command == "run-mic":
        runner = HeadlessMicRunner(
            settings=settings,
            config_path=args.config,
            roster_path=args.roster,
            subject_ids=subject_ids,
            linked_plan_id=args.plan,
            output_path=args.output,
        )
        try:
            return asyncio.run(runner.run())
        except ValueError as exc:
            # Missing API key or secrets passphrase.
            print(f"Error: {exc}", flush=True)
            return 2

    parser.print_help()
    return 2


def _load_settings_or_default(path: Path) -> AppSettings:
    if path.exists():
        return load_settings(path)
    return AppSettings()


if __name__ == "__main__":
    raise SystemExit(main())
