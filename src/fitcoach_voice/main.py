from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
from pathlib import Path

from fitcoach_voice.app.client_runner import HeadlessClientRunner
from fitcoach_voice.app.keys import run_keys_command
from fitcoach_voice.app.log_setup import configure_logging
from fitcoach_voice.app.server_runner import HeadlessServerRunner
from fitcoach_voice.app.wiring import PROVIDER_SECRETS, create_secret_store
from fitcoach_voice.config.paths import default_settings_path
from fitcoach_voice.config.settings import TTSProviderName, load_settings_or_default


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fitcoach-voice")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument(
        "--config",
        type=Path,
        default=default_settings_path(),
        help="Path to settings JSON (default: user config dir)",
    )
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the voice pipeline websocket server")
    serve.add_argument("--host", default=None, help="Bind address (default: from settings)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: from settings)")

    client = sub.add_parser("run-client", help="Talk to the server from this machine's mic and speakers")
    client.add_argument("--url", default=None, help="Server websocket URL (default: from settings)")
    client.add_argument(
        "--tts",
        choices=[name.value for name in TTSProviderName],
        default=None,
        help="Voice backend to request from the server",
    )

    keys = sub.add_parser("keys", help="Manage provider API keys in the system keyring")
    keys_sub = keys.add_subparsers(dest="keys_action", required=True)
    keys_sub.add_parser("show", help="List provider keys (masked) and where each comes from")
    key_set = keys_sub.add_parser("set", help="Store a provider key")
    key_set.add_argument("key", choices=list(PROVIDER_SECRETS))
    key_set.add_argument("--value", default=None, help="Key value (prompted for when omitted)")
    key_delete = keys_sub.add_parser("delete", help="Remove a stored provider key")
    key_delete.add_argument("key", choices=list(PROVIDER_SECRETS))

    return parser


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

    configure_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)

    try:
        settings = load_settings_or_default(args.config)
    except ValueError as exc:
        print(f"Error: invalid settings file {args.config}: {exc}", flush=True)
        return 2

    if args.command == "serve":
        runner = HeadlessServerRunner(settings=settings, host=args.host, port=args.port)
        return _run(runner.run())

    if args.command == "run-client":
        runner = HeadlessClientRunner(
            settings=settings,
            url=args.url,
            tts=TTSProviderName(args.tts) if args.tts else None,
        )
        return _run(runner.run())

    if args.command == "keys":
        value = args.value if args.keys_action == "set" else None
        if args.keys_action == "set" and value is None:
            value = getpass.getpass(f"{args.key}: ")
        return run_keys_command(
            create_secret_store(settings.secrets),
            action=args.keys_action,
            key=getattr(args, "key", None),
            value=value,
        )

    parser.print_help()
    return 2


def _run(coro) -> int:
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
