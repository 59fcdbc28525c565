"""Command line interface for crosspost package."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from rich.logging import RichHandler

from . import __version__
from .cli_progress import (
    UploadProgressDisplay,
    mask_secret,
    render_configuration_summary,
    render_outcome,
)
from .errors import CredentialError, ValidationError
from .models import CREDENTIAL_KEYS, CrossPostConfig, MediaAsset, OutcomeStatus
from .orchestrator import CrossPostCoordinator
from .services.credentials import (
    DEFAULT_CREDENTIALS_FILE,
    EnvCredentialStore,
    JsonFileCredentialStore,
    LayeredCredentialStore,
)
from .services.transcoder import FFmpegTranscoder

EXIT_CODES = {
    OutcomeStatus.SUCCESS: 0,
    OutcomeStatus.FAILED: 1,
    OutcomeStatus.PARTIAL: 2,
}


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Route crosspost logs to a RichHandler on stderr.

    Nothing is logged unless --debug, --log-level or LOG_LEVEL asks for
    it, so upload progress owns the terminal. httpx request lines stay
    at WARNING or above.

    Returns:
        The effective level name, or "silent"
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    logging.disable(logging.NOTSET)

    requested = "DEBUG" if debug else (log_level or os.getenv("LOG_LEVEL"))
    if silent or not requested:
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    level = getattr(logging, requested.upper(), logging.INFO)
    handler = RichHandler(rich_tracebacks=True, markup=False, show_time=False, show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    return logging.getLevelName(level)


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    return value


def _load_env_file(path: Path) -> None:
    """Export CROSSPOST_* style KEY=VALUE lines; the shell environment wins."""
    if not path.is_file():
        raise CLIError(f"env file not found: {path}")
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    for line in lines:
        line = line.strip()
        if line.startswith("export "):
            line = line[len("export "):]
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key or key.startswith("#"):
            continue
        os.environ.setdefault(key, _unquote(value))


def _default_env_file() -> Optional[Path]:
    path = Path(".env")
    return path if path.is_file() else None


def _resolve_credentials_file(path: Optional[Path]) -> Path:
    if path is not None:
        return Path(path).expanduser()
    env_path = os.getenv("CROSSPOST_CREDENTIALS_FILE")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CREDENTIALS_FILE.expanduser()


def _parse_pairs(items: Sequence[str]) -> List[Tuple[str, str]]:
    """Parse KEY=VALUE arguments against the known credential keys."""
    pairs = []
    for item in items:
        if "=" not in item:
            raise CLIError(f"expected KEY=VALUE, got: {item}")
        key, value = item.split("=", 1)
        key = key.strip()
        if key not in CREDENTIAL_KEYS:
            raise CLIError(f"unknown credential key: {key} (known: {', '.join(CREDENTIAL_KEYS)})")
        pairs.append((key, _unquote(value)))
    return pairs


async def _run_post(
    text: str,
    media: Optional[Path],
    no_bluesky: bool,
    credentials_file: Path,
) -> int:
    config = CrossPostConfig.from_env()
    store = LayeredCredentialStore(JsonFileCredentialStore(credentials_file), EnvCredentialStore())
    coordinator = CrossPostCoordinator(store, config=config, transcoder=FFmpegTranscoder())

    display = UploadProgressDisplay()
    display.attach(coordinator.events)

    try:
        await coordinator.load_credentials()
        coordinator.set_text(text)
        if no_bluesky:
            coordinator.set_bluesky_enabled(False)

        if media is not None:
            try:
                asset = MediaAsset.from_path(media)
            except (OSError, ValueError) as exc:
                raise CLIError(f"cannot use media {media}: {exc}") from exc
            await coordinator.select_media(asset)

        outcome = await coordinator.request_post()
        await coordinator.events.drain()
    except ValidationError as exc:
        raise CLIError(str(exc)) from exc
    except CredentialError as exc:
        missing = ", ".join(exc.missing_keys) or "-"
        raise CLIError(
            f"{exc} Missing: {missing}. "
            f"Run: crosspost credentials set apiKey=... apiSecret=... accessToken=... accessSecret=..."
        ) from exc
    finally:
        display.stop()
        await coordinator.close()

    if outcome is None:
        print("ERROR: post request was superseded by a new media selection", file=sys.stderr)
        return 1

    render_outcome(outcome)
    return EXIT_CODES[outcome.status]


async def _run_credentials(action: str, pairs: Sequence[str], credentials_file: Path) -> int:
    store = JsonFileCredentialStore(credentials_file)
    if action == "set":
        parsed = _parse_pairs(pairs)
        if not parsed:
            raise CLIError("nothing to set: pass KEY=VALUE pairs")
        await store.set(parsed)
        print(f"Saved {len(parsed)} credential(s) to {store.path}")
        return 0

    values = await store.get(list(CREDENTIAL_KEYS))
    render_configuration_summary({key: mask_secret(values.get(key)) for key in CREDENTIAL_KEYS})
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crosspost",
        description="Post one message (with optional image/video) to Twitter and Bluesky.",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file",
    )
    parser.add_argument(
        "--credentials-file",
        type=Path,
        default=None,
        help=f"Credentials JSON file (default from CROSSPOST_CREDENTIALS_FILE or {DEFAULT_CREDENTIALS_FILE})",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument("--version", action="version", version=f"crosspost {__version__}")

    commands = parser.add_subparsers(dest="command")

    post = commands.add_parser("post", help="Publish a message")
    post.add_argument("text", help="Message text")
    post.add_argument("-m", "--media", type=Path, default=None, help="Image or video to attach")
    post.add_argument("--no-bluesky", action="store_true", help="Only post to Twitter")

    creds = commands.add_parser("credentials", help="Manage stored credentials")
    creds.add_argument("action", choices=["set", "show"])
    creds.add_argument("pairs", nargs="*", help="KEY=VALUE pairs for 'set'")

    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    used_env_file = args.env_file or _default_env_file()
    if used_env_file is not None:
        try:
            _load_env_file(Path(used_env_file))
        except CLIError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    _setup_logging(debug=args.debug, silent=args.silent, log_level=args.log_level)

    if args.command is None:
        parser.print_help()
        return 0

    credentials_file = _resolve_credentials_file(args.credentials_file)

    try:
        if args.command == "credentials":
            return asyncio.run(_run_credentials(args.action, args.pairs, credentials_file))

        media = Path(args.media).expanduser() if args.media else None
        if media is not None and not media.exists():
            print(f"ERROR: media does not exist: {media}", file=sys.stderr)
            return 1
        return asyncio.run(
            _run_post(
                text=args.text,
                media=media,
                no_bluesky=args.no_bluesky,
                credentials_file=credentials_file,
            )
        )
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
