from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import structlog
import uvicorn

from vodhub.infrastructure.config import load_config
from vodhub.infrastructure.logging.setup import configure_logging
from vodhub.interfaces.main import build_app

log = structlog.get_logger(__name__)


def _parse_args(argv: Iterable[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="vodhub")

    # Server options
    parser.add_argument(
        "--host",
        default=None,
        help="Bind host (overrides HOST env).",
    )
    parser.add_argument(
        "--port",
        default=None,
        type=int,
        help="Bind port (overrides PORT env).",
    )

    # Config wiring flags
    parser.add_argument(
        "--config",
        default=None,
        help="Path to YAML config file.",
    )
    parser.add_argument(
        "--dotenv",
        default=None,
        help="Path to .env file.",
    )
    parser.add_argument(
        "--config-url",
        default=None,
        help="Site config document (URL or local path) loaded at startup.",
    )
    parser.add_argument(
        "--store-backend",
        default=None,
        choices=["memory", "diskcache", "redis"],
        help="Override persistence backend.",
    )
    parser.add_argument(
        "--deadline",
        default=None,
        type=float,
        help="Override the aggregator's overall query deadline (seconds).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level.",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        choices=["json", "console"],
        help="Override log format.",
    )

    return parser.parse_args(argv)


def cli_overrides_from_args(args: argparse.Namespace) -> dict[str, Any]:
    """Flat override keys understood by ``load_config``; unset flags are omitted."""
    flags = {
        "config_url": args.config_url,
        "store_backend": args.store_backend,
        "aggregator_deadline_seconds": args.deadline,
        "log_level": args.log_level,
        "log_format": args.log_format,
    }
    return {k: v for k, v in flags.items() if v is not None}


def start(argv: Iterable[str] | None = None) -> None:
    """Process entrypoint: load config once, then build and serve the app."""
    if argv is None:
        argv = sys.argv[1:]

    args = _parse_args(argv)

    host = args.host or os.getenv("HOST", "0.0.0.0")
    port = int(args.port or os.getenv("PORT", "7980"))

    config = load_config(
        config_path=Path(args.config) if args.config else None,
        dotenv_path=Path(args.dotenv) if args.dotenv else None,
        cli_overrides=cli_overrides_from_args(args),
    )

    log_config = configure_logging(config)
    log.info("vodhub_starting", host=host, port=port, environment=config.environment)

    uvicorn.run(
        build_app(config),
        host=host,
        port=port,
        log_config=log_config,
    )


if __name__ == "__main__":
    raise SystemExit(start())
