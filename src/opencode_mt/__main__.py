"""CLI entry point for opencode-mt."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from . import __version__
from .config import AppConfig, _get_config_path, load_config, split_model_ref


def _load_config_or_exit() -> tuple[Path, AppConfig]:
    config_path = _get_config_path()
    try:
        config = load_config(config_path)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        print(f"  Config: {config_path}", file=sys.stderr)
        sys.exit(1)
    return config_path, config


def _configure_logging(data_dir: Path, debug: bool) -> None:
    root = logging.getLogger("opencode_mt")
    if not debug:
        root.addHandler(logging.NullHandler())
        return
    data_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(data_dir / "ocmt.log", encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG)


async def _test_connection(config: AppConfig) -> None:
    from .services.client import ApiError, OpencodeClient

    print("Config:")
    print(f"  Server: {config.server.url}")
    print(f"  Auth:   {'basic (' + config.server.username + ')' if config.server.password else 'none'}")
    print(f"  Model:  {config.model.ref}")

    async with OpencodeClient(config.server) as client:
        print("\n1. Reaching server...")
        if not await client.health():
            print("   FAILED - server did not answer")
            sys.exit(1)
        print("   OK")

        print("\n2. Listing providers...")
        try:
            providers = await client.list_providers()
        except ApiError as e:
            print(f"   FAILED - {e}")
            sys.exit(1)
        refs = [f"{p.id}/{m.id}" for p in providers for m in p.models.values()]
        print(f"   OK - {len(refs)} model(s) available")
        for ref in refs[:10]:
            print(f"     - {ref}")
        if config.model.ref not in refs:
            print(f"   WARNING - configured model {config.model.ref} is not offered by the server")

    print("\nAll checks passed.")


def _run_chat(config: AppConfig, prompt: str | None = None, new_session: bool = False) -> None:
    """Launch the REPL, or answer a single prompt."""
    from .cli.repl import run_cli

    try:
        code = asyncio.run(run_cli(config, prompt=prompt, new_session=new_session))
    except (KeyboardInterrupt, asyncio.CancelledError):
        code = 130
    sys.exit(code)


def main() -> None:
    parser = argparse.ArgumentParser(prog="ocmt", description="Streaming terminal client for opencode")
    subparsers = parser.add_subparsers(dest="command")

    chat_parser = subparsers.add_parser("chat", help="Send one prompt and print the streamed reply")
    chat_parser.add_argument("prompt", help="Prompt text")

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--test", action="store_true", help="Test connection settings and exit")
    parser.add_argument("--debug", action="store_true", help="Write a debug log to the data directory")
    parser.add_argument("--url", default=None, help="opencode server URL (e.g. http://127.0.0.1:4096)")
    parser.add_argument(
        "-m",
        "--model",
        dest="model",
        default=None,
        help="Override model for this run (provider/model, e.g. opencode/big-pickle)",
    )
    parser.add_argument("--agent", default=None, help="Override agent for this run")
    parser.add_argument("--new", dest="new_session", action="store_true", help="Start a new session")

    args = parser.parse_args()

    _config_path, config = _load_config_or_exit()
    _configure_logging(config.app.data_dir, args.debug)

    if args.url:
        config.server.url = args.url.rstrip("/")
    if args.model:
        try:
            config.model.provider_id, config.model.model_id = split_model_ref(args.model)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(2)
    if args.agent:
        config.model.agent = args.agent

    if args.test:
        asyncio.run(_test_connection(config))
        return

    if args.command == "chat":
        _run_chat(config, prompt=args.prompt, new_session=args.new_session)
    else:
        _run_chat(config, new_session=args.new_session)


if __name__ == "__main__":
    main()
