"""Command-line entry point."""

import argparse
import logging
import sys
from importlib import metadata
from pathlib import Path

from dotenv import load_dotenv

from . import fmt
from .agent import DEFAULT_SYSTEM_PROMPT, Agent
from .config import (
    _UNSET,
    apply_config_to_args,
    generate_config,
    global_config_dir,
    load_config,
)
from .context import DEFAULT_SESSION_DIR, SessionContext, check_session_id, generate_session_id
from .provider import PROVIDER_NAMES, resolve_provider_config
from .repl import Repl
from .report import AgentError, ConfigError
from .tools import build_tools

logger = logging.getLogger(__name__)

INPUT_HISTORY_FILE = ".input_history"


def build_parser():
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="kota",
        description="An interactive coding assistant with persistent sessions, "
        "streaming responses and tool calling across several LLM providers.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Write a template config file and exit (global unless --project).",
    )
    parser.add_argument(
        "--project",
        action="store_true",
        help="With --init-config, write <base-dir>/kota.toml instead.",
    )
    parser.add_argument(
        "--provider",
        choices=PROVIDER_NAMES,
        default=_UNSET,
        help="LLM provider (default: openai, or $KOTA_PROVIDER).",
    )
    parser.add_argument(
        "--model",
        default=_UNSET,
        help="Model name (default: per provider, or $MODEL_NAME).",
    )
    parser.add_argument(
        "--api-key",
        default=_UNSET,
        help="API key for the provider (default: $API_KEY or the provider's own variable).",
    )
    parser.add_argument(
        "--base-url",
        default=_UNSET,
        help="API base URL (default: per provider, or $API_BASE).",
    )
    parser.add_argument(
        "--session",
        metavar="ID",
        default=_UNSET,
        help="Session to resume or create (default: a new timestamped session).",
    )
    parser.add_argument(
        "--session-dir",
        metavar="DIR",
        default=_UNSET,
        help=f"Where session records are stored (default: <base-dir>/{DEFAULT_SESSION_DIR}).",
    )
    parser.add_argument(
        "--max-messages",
        metavar="N",
        type=int,
        default=_UNSET,
        help="Messages kept per session; older ones are evicted (default: 100).",
    )
    parser.add_argument(
        "--system-prompt",
        default=_UNSET,
        help="Replace the built-in system prompt.",
    )
    parser.add_argument(
        "--base-dir",
        default=".",
        help="Project directory the tools operate in (default: current directory).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=_UNSET,
        help="Show tool arguments, results and stream events in detail.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=_UNSET,
        help="Enable debug logging and per-session audit lines.",
    )
    parser.add_argument(
        "--yolo",
        action="store_true",
        default=_UNSET,
        help="Let file tools reach outside the base directory.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color even when stderr is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color even when stderr is a TTY.",
    )

    return parser


def _init_config(args) -> None:
    if args.project:
        path = Path(args.base_dir).resolve() / "kota.toml"
    else:
        path = global_config_dir() / "config.toml"
    if path.exists():
        fmt.error(f"{path} already exists")
        sys.exit(1)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(generate_config(project=args.project), encoding="utf-8")
    print(path)


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("kota")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        _init_config(args)
        sys.exit(0)

    load_dotenv()

    try:
        config = load_config(Path(args.base_dir))
    except ConfigError as e:
        fmt.error(str(e))
        sys.exit(1)
    apply_config_to_args(args, config)

    fmt.init(color=args.color, no_color=args.no_color)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        repl = _build_repl(args)
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)
    repl.run()


def _build_repl(args) -> Repl:
    """Resolve configuration into a ready-to-run Repl. Raises AgentError."""
    if args.max_messages < 1:
        raise ConfigError("--max-messages must be at least 1")

    provider = resolve_provider_config(
        args.provider, model=args.model, api_key=args.api_key, base_url=args.base_url
    )
    logger.debug("provider=%s model=%s", provider.provider.value, provider.model_string)

    base_dir = Path(args.base_dir).resolve()
    if not base_dir.is_dir():
        raise ConfigError(f"base directory {args.base_dir!r} is not a directory")

    session_dir = Path(args.session_dir or DEFAULT_SESSION_DIR).expanduser()
    if not session_dir.is_absolute():
        session_dir = base_dir / session_dir

    session_id = check_session_id(args.session) if args.session else generate_session_id()
    context = SessionContext.create_or_load(
        session_dir, session_id, max_messages=args.max_messages
    )

    agent = Agent(
        provider,
        build_tools(str(base_dir), unrestricted=args.yolo),
        system_prompt=args.system_prompt or DEFAULT_SYSTEM_PROMPT,
    )
    return Repl(
        agent,
        context,
        verbose=args.verbose,
        debug=args.debug,
        history_path=session_dir / INPUT_HISTORY_FILE,
    )


if __name__ == "__main__":
    main()
