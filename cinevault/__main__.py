"""
Run the Cinevault server: python -m cinevault
"""

import argparse
import logging

import uvicorn

from . import __version__
from .api import create_app
from .config import load_config, set_config
from .logs import configure_logging

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="cinevault", description="Cinevault media ingestion server")
    parser.add_argument("-c", "--config", help="Path to a cinevault.yaml file")
    parser.add_argument("--host", help="Override server.host")
    parser.add_argument("--port", type=int, help="Override server.port")
    parser.add_argument("--log-level", help="Override logging.level (DEBUG, INFO, ...)")
    parser.add_argument("--version", action="version", version=f"cinevault {__version__}")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)

    config = load_config(args.config)
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.log_level:
        config.logging.level = args.log_level.upper()
    set_config(config)

    configure_logging(config.logging)
    logger.info(f"[Main] Starting Cinevault v{__version__} on {config.server.host}:{config.server.port}")

    uvicorn.run(
        create_app(),
        host=config.server.host,
        port=config.server.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
