#!/usr/bin/env python3
"""
Command line entry point.

Usage:
    python -m medledger check-config
    python -m medledger serve --host 0.0.0.0 --port 8000
"""

import argparse
import logging
import sys

import uvicorn

from medledger.api import create_app
from medledger.config import Settings, configure_logging
from medledger.errors import PreconditionFailure
from medledger.services import build_services

logger = logging.getLogger("medledger")


def check_config(settings):
    """Report missing settings; exit code 1 when anything required is absent"""
    missing = settings.missing()
    if missing:
        for name in missing:
            logger.error(f"{name} is not configured")
        return 1
    logger.info(f"Configuration complete for network {settings.ledger_network}")
    return 0


def serve(settings, host, port):
    try:
        services = build_services(settings)
    except PreconditionFailure as e:
        logger.critical(f"Refusing to start: {e}")
        return 1

    uvicorn.run(create_app(services), host=host, port=port)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="Medical ledger services")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("check-config", help="Validate the configuration")

    serve_parser = subparsers.add_parser("serve", help="Run the status API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)
    settings = Settings.from_env(args.env_file)
    configure_logging(settings.log_level)

    if args.command == "check-config":
        return check_config(settings)
    return serve(settings, args.host, args.port)


if __name__ == "__main__":
    sys.exit(main())
