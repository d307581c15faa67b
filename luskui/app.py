"""LuskUI server entry point."""

from __future__ import annotations

import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"


def configure_logging(log_path: str | Path, level: str = "INFO") -> None:
    """Send logs to a rotating file and to stderr."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    log_file = Path(log_path)
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
        )
    except OSError as exc:
        logging.getLogger(__name__).warning(
            "File logging disabled (%s): %s", log_file, exc,
        )
        return
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="luskui",
        description="LuskUI: stream coding-agent runs to the browser",
    )
    parser.add_argument(
        "--host", metavar="HOST",
        help="Bind address (default: $HOST or 0.0.0.0)",
    )
    parser.add_argument(
        "--port", type=int,
        help="Server port (default: $PORT or 7860)",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML settings file (default: <repo>/.luskui/luskui.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Log at DEBUG level",
    )
    args = parser.parse_args()

    from luskui.engine.backends import get_backend
    from luskui.engine.config import load_settings
    from luskui.engine.env import hydrate_env
    from luskui.engine.errors import ConfigurationError
    from luskui.web.server import LuskServer

    # .env and Claude CLI credentials must be in the environment before
    # settings are resolved.
    hydrate_env()
    settings = load_settings(args.config)
    if args.host:
        settings.host = args.host
    if args.port is not None:
        settings.port = args.port

    configure_logging(settings.log_path, "DEBUG" if args.verbose else settings.log_level)
    logger = logging.getLogger(__name__)
    logger.info(
        "Starting LuskUI repo=%s backend=%s config=%s log=%s",
        settings.repo_root, settings.backend, args.config or "<auto>", settings.log_path,
    )

    try:
        backend = get_backend(settings)
    except ConfigurationError as exc:
        logger.error("%s", exc)
        sys.exit(2)

    server = LuskServer(settings, backend)
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("LuskUI stopped")


if __name__ == "__main__":
    main()
