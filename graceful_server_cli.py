#!/usr/bin/env python3
"""
Line echo server with graceful shutdown.

Every line received is one request and is echoed back. Send SIGINT or
SIGTERM to watch idle connections get reaped, busy ones drain and the
process exit with 0, or with 1 when the timeout expires first.
"""

import argparse
import asyncio
import logging
import sys

from graceful_shutdown import graceful_shutdown
from server_handle import StreamServerHandle
from shutdown_config import ErrorPolicy, ShutdownOptions
from system_utils import setup_shutdown_logger


async def echo_handler(server: StreamServerHandle, conn_id: int,
                       reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    while True:
        line = await reader.readline()
        if not line:
            break
        async with server.request(conn_id):
            writer.write(line)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Line echo server with graceful shutdown")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind")
    parser.add_argument("--port", type=int, default=8080, help="Port to listen on")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Seconds before a forced shutdown (0 disables)")
    parser.add_argument("--signals", default=None,
                        help="Space separated signal names, e.g. 'SIGINT SIGTERM'")
    parser.add_argument("--development", action="store_true", default=None,
                        help="Exit immediately on signal without draining connections")
    parser.add_argument("--log-errors", action="store_true",
                        help="Log errors raised while shutting down")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level")
    parser.add_argument("--log-file", default=None, help="Also write debug logs to this file")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    return parser.parse_args(argv)


def build_options(args: argparse.Namespace) -> ShutdownOptions:
    """Options from the environment, with command line values taking precedence"""
    overrides = {}
    if args.signals is not None:
        overrides["signals"] = args.signals
    if args.timeout is not None:
        overrides["timeout"] = args.timeout
    if args.development is not None:
        overrides["development"] = args.development
    if args.log_errors:
        overrides["error_policy"] = ErrorPolicy.LOG
    return ShutdownOptions.from_env(args.env_file, **overrides)


async def run_server(args: argparse.Namespace, options: ShutdownOptions, logger: logging.Logger) -> None:
    server = StreamServerHandle(echo_handler, args.host, args.port, logger)
    await server.start()
    graceful_shutdown(server, options, logger=logger)
    await server.serve_until_closed()


def main(argv=None) -> None:
    args = parse_args(argv)
    logger = setup_shutdown_logger(level=getattr(logging, args.log_level), log_file=args.log_file)

    try:
        options = build_options(args)
    except (ValueError, TypeError) as e:
        logger.error(f"Invalid shutdown configuration: {e}")
        sys.exit(2)

    asyncio.run(run_server(args, options, logger))


if __name__ == "__main__":
    main()
