"""CLI entry point for the CAN WebSocket bridge."""

import argparse
import asyncio
import logging
import signal
import sys

from rich.console import Console
from rich.logging import RichHandler

from can_bridge.config import BridgeConfig
from can_bridge.exceptions import ConfigError
from can_bridge.server import CanBridgeServer

logger = logging.getLogger(__name__)


def parse_args(defaults: BridgeConfig) -> argparse.Namespace:
    """Parse command line arguments, defaulting to the environment configuration."""
    parser = argparse.ArgumentParser(
        description="WebSocket bridge relaying CAN frames between a browser and a local bus"
    )
    parser.add_argument(
        "--device",
        default=defaults.device,
        help=f"CAN channel to bridge, e.g. can0 or vcan0 (default: {defaults.device})",
    )
    parser.add_argument(
        "--interface",
        default=defaults.interface,
        help=f"python-can interface (default: {defaults.interface})",
    )
    parser.add_argument(
        "--host",
        default=defaults.host,
        help=f"Host to listen on for clients (default: {defaults.host})",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=defaults.port,
        help=f"Port to listen on for clients (default: {defaults.port})",
    )
    parser.add_argument(
        "--heartbeat-interval",
        type=float,
        default=defaults.heartbeat_interval,
        help="Seconds between heartbeats and device reopen attempts "
        f"(default: {defaults.heartbeat_interval})",
    )
    parser.add_argument(
        "--service-url",
        default=None,
        help="Address reported to clients (default: derived from host and port)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose debug logging",
    )
    return parser.parse_args()


async def main_async(config: BridgeConfig) -> None:
    """Async main function."""
    server = CanBridgeServer(config)

    loop = asyncio.get_running_loop()

    def signal_handler() -> None:
        logger.info("Received shutdown signal")
        asyncio.create_task(server.stop())  # noqa: RUF006

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await server.serve()
    except OSError:
        logger.exception("Cannot listen on %s:%d", config.host, config.port)
        sys.exit(1)
    finally:
        await server.stop()


def main() -> None:
    """Main entry point."""
    try:
        defaults = BridgeConfig.from_env()
    except ConfigError as exc:
        sys.exit(f"error: {exc}")

    args = parse_args(defaults)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                rich_tracebacks=True,
                tracebacks_show_locals=args.verbose,
            )
        ],
    )

    try:
        config = BridgeConfig(
            device=args.device,
            interface=args.interface,
            host=args.host,
            port=args.port,
            heartbeat_interval=args.heartbeat_interval,
            service_url=args.service_url,
        )
    except ConfigError as exc:
        sys.exit(f"error: {exc}")

    try:
        asyncio.run(main_async(config))
    except KeyboardInterrupt:
        logger.info("Exiting")


if __name__ == "__main__":
    main()
