"""Command line entry point.

    textual-acp --backend codex --cwd ~/src/project
    textual-acp --command "python examples/demo_agent.py"
    textual-acp --health
"""

from __future__ import annotations

import argparse
import shlex
import sys
from collections.abc import Sequence

from .config import BackendConfig, BackendKind
from .errors import ConfigError
from .health import check_health, format_checks, healthy


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="textual-acp",
        description="Chat with an Agent Client Protocol agent in the terminal",
    )
    parser.add_argument(
        "--backend",
        choices=[kind.value for kind in BackendKind],
        help="Agent backend (default: $TEXTUAL_ACP_BACKEND or opencode)",
    )
    parser.add_argument("--command", help="Agent executable or full command line")
    parser.add_argument("--cwd", help="Working directory for the agent process")
    parser.add_argument("--agent", help="Agent mode to select after creating a session")
    parser.add_argument("--model", help="Model to select after creating a session")
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Approve agent permission requests automatically",
    )
    parser.add_argument("--no-persist", action="store_true", help="Don't store session metadata")
    parser.add_argument("--health", action="store_true", help="Check backend dependencies and exit")
    return parser


def config_from_args(args: argparse.Namespace) -> BackendConfig:
    """Environment defaults overridden by command line options."""
    base = BackendConfig.from_env()
    command: str | list[str] | tuple[str, ...] = base.command
    if args.command:
        command = shlex.split(args.command) if " " in args.command.strip() else args.command
    return BackendConfig.from_mapping(
        {
            "backend": args.backend or base.kind,
            "command": command,
            "cwd": args.cwd or base.cwd,
            "agent": args.agent or base.agent,
            "model": args.model or base.model,
        }
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = config_from_args(args)
    except ConfigError as e:
        print(f"textual-acp: {e.message}", file=sys.stderr)
        return 2

    if args.health:
        checks = check_health(config)
        print(format_checks(checks))
        return 0 if healthy(checks) else 1

    from .app import ACPApp
    from .session_storage import SessionStorage

    store = None if args.no_persist else SessionStorage()
    ACPApp(config, store=store, auto_approve=args.yes).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
