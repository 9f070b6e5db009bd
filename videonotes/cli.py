"""Command line interface for videonotes."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence, Tuple

from rich.logging import RichHandler

from . import __version__
from .cli_progress import (
    StatusTimelineDisplay,
    render_configuration_summary,
    render_result,
)
from .models import PayloadCandidate, TranscribeConfig, resolve_api_key
from .orchestrator import TranscriptionOrchestrator
from .use_cases.prepare_source import is_http_locator
from .utils.events import ErrorRecord, ResultRecord, StatusEvent, encode_ndjson


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Configure logging.

    Default behavior is silent unless --debug, --log-level or LOG_LEVEL is
    provided. Returns a string describing effective mode.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.disable(logging.NOTSET)

    env_level = os.getenv("LOG_LEVEL")
    if silent or (not debug and not log_level and not env_level):
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    else:
        level = getattr(logging, (log_level or env_level or "INFO").upper(), logging.INFO)

    handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    return logging.getLevelName(level)


def _strip_optional_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def _load_env_file(path: Path, override: bool = False) -> None:
    if not path.exists():
        raise CLIError(f"env file not found: {path}")
    if not path.is_file():
        raise CLIError(f"env path is not a file: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        value = _strip_optional_quotes(value.strip())
        if override or key not in os.environ:
            os.environ[key] = value


def _resolve_default_env_file() -> Optional[Path]:
    default_env = Path(".env")
    return default_env if default_env.exists() and default_env.is_file() else None


def _build_candidate(
    source: str, mime_type: Optional[str] = None
) -> Tuple[Optional[str], Optional[PayloadCandidate]]:
    """Split the SOURCE argument into (url, payload) for the orchestrator."""
    value = source.strip()
    if "://" in value:
        return value, None

    path = Path(value).expanduser()
    if not path.exists():
        raise CLIError(f"source does not exist: {path}")
    if not path.is_file():
        raise CLIError(f"source is not a file: {path}")
    return None, PayloadCandidate.from_path(path, mime_type=mime_type)


async def _run_transcription(
    url: Optional[str],
    payload: Optional[PayloadCandidate],
    config: TranscribeConfig,
    ndjson: bool,
) -> int:
    display = None if ndjson else StatusTimelineDisplay()
    exit_code = 1

    async with TranscriptionOrchestrator(config=config) as orchestrator:
        process = orchestrator.run(url=url, payload=payload)
        if display is not None:
            process.on_upload_progress(display.on_upload_progress)

        try:
            async with process:
                async for record in process:
                    if ndjson:
                        sys.stdout.write(encode_ndjson(record))
                        sys.stdout.flush()
                    elif isinstance(record, StatusEvent):
                        display.on_status(record)
                    elif isinstance(record, ErrorRecord):
                        display.on_error(record)
                    elif isinstance(record, ResultRecord):
                        display.close()
                        render_result(record.result)

                    if isinstance(record, ResultRecord):
                        exit_code = 0
        finally:
            if display is not None:
                display.close()

    return exit_code


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="videonotes",
        description="Transcribe a video and summarize it into notes with Gemini.",
    )
    parser.add_argument(
        "source",
        nargs="?",
        help="Local video file or http(s) video URL",
    )
    parser.add_argument(
        "-m",
        "--model",
        default=None,
        help="Gemini model id (default from GEMINI_MODEL or gemini-1.5-flash)",
    )
    parser.add_argument(
        "--mime-type",
        default=None,
        help="Override the detected mime type of a local file (must be video/*)",
    )
    parser.add_argument(
        "--ndjson",
        action="store_true",
        help="Print progress and result as newline-delimited JSON records",
    )
    parser.add_argument(
        "--max-poll-attempts",
        type=int,
        default=None,
        help="Give up after this many PROCESSING checks (default: no limit)",
    )
    parser.add_argument(
        "--max-poll-seconds",
        type=float,
        default=None,
        help="Give up when processing takes longer than this (default: no limit)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"videonotes {__version__}",
    )
    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    used_env_file = args.env_file or _resolve_default_env_file()
    if used_env_file is not None:
        try:
            _load_env_file(Path(used_env_file))
        except CLIError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    effective_log_mode = _setup_logging(
        debug=args.debug,
        silent=args.silent,
        log_level=args.log_level,
    )

    if args.source is None:
        parser.print_help()
        return 0

    try:
        url, payload = _build_candidate(args.source, mime_type=args.mime_type)
        config = TranscribeConfig.from_env(
            model=args.model,
            max_poll_attempts=args.max_poll_attempts,
            max_poll_seconds=args.max_poll_seconds,
        )
    except (CLIError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    if not args.ndjson:
        if payload is not None:
            source_kind = f"file ({payload.mime_type or 'unknown type'})"
        else:
            source_kind = "url" if is_http_locator(url or "") else "invalid url"
        render_configuration_summary(
            {
                "Source": args.source,
                "Source Type": source_kind,
                "Model": config.model,
                "API Key": "set" if resolve_api_key() else "(missing)",
                "Poll Ceiling": (
                    f"{config.max_poll_attempts or '-'} checks / {config.max_poll_seconds or '-'} s"
                ),
                "Env File": str(used_env_file) if used_env_file else "-",
                "Logging": effective_log_mode,
            }
        )

    try:
        return asyncio.run(_run_transcription(url, payload, config, ndjson=args.ndjson))
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
