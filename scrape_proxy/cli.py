"""
Command-line interface for the scrape proxy.
"""

import argparse
import os
import sys
from pathlib import Path

import msgspec
import uvicorn

from scrape_proxy.config.env import load_credentials_from_json, load_pool_config
from scrape_proxy.server import create_app
from scrape_proxy.utils.logging import get_logger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scrape proxy with a pooled credential scheduler")
    parser.add_argument(
        "--host",
        type=str,
        default=os.getenv("HOST", "0.0.0.0"),
        help="Interface to bind (default: $HOST or 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "3000")),
        help="Port to listen on (default: $PORT or 3000)",
    )
    parser.add_argument(
        "--credentials-file",
        type=Path,
        help="JSON credential pool file (overrides PREMIUM_/FREE_CREDENTIALS)",
    )
    parser.add_argument(
        "--store",
        choices=["memory", "redis", "file"],
        help="Durable store backend (overrides STORE_BACKEND)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.getenv("LOG_LEVEL", "info").lower(),
        help="Log level for the server (default: $LOG_LEVEL or info)",
    )
    return parser


def main() -> None:
    """Main CLI entry point."""
    args = build_parser().parse_args()

    try:
        config = load_pool_config()
        if args.credentials_file:
            config = msgspec.structs.replace(
                config,
                credentials=load_credentials_from_json(args.credentials_file.resolve()),
            )
        if args.store:
            config = msgspec.structs.replace(config, store_backend=args.store)
    except (OSError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    logger.info(f"Starting scrape proxy on {args.host}:{args.port}")
    uvicorn.run(
        create_app(config),
        host=args.host,
        port=args.port,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
