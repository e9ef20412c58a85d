"""
Fieldgate - Main Entry Point

Loads the configuration and runs the gateway until SIGINT/SIGTERM.

Usage:
    fieldgate                          # Use default config.yaml
    fieldgate --config my.yaml         # Use custom config file
    fieldgate --dry-run                # Print devices and exit
    python -m fieldgate --log-level debug --log-format text

The gateway will:
1. Load and validate the YAML configuration
2. Connect to the Modbus bus (TCP or serial), retrying until it succeeds
3. Poll every device and forward readings to InfluxDB
4. Reconnect with a fresh health counter whenever the bus goes unhealthy
"""

import argparse
import asyncio
import signal
import sys

from fieldgate import __version__
from fieldgate.common.config import GatewayConfig, load_config_file
from fieldgate.common.exceptions import ConfigError
from fieldgate.common.logging_setup import LOG_LEVELS, get_service_logger, setup_logging
from fieldgate.services.bus import create_bus
from fieldgate.services.polling import select_threshold_policy
from fieldgate.services.status import StatusServer
from fieldgate.services.telemetry import create_sink
from fieldgate.supervisor import ConnectionLifecycleManager

logger = get_service_logger("main")


def print_config_summary(config: GatewayConfig) -> None:
    """Print a summary of the configuration."""
    policy = select_threshold_policy(config.health.threshold_policy)

    print("\n" + "=" * 60)
    print("  FIELDGATE")
    print("=" * 60)
    print(f"\n  Bus: {config.bus.endpoint}")
    print(f"  Sink: {config.sink.hostname}")
    print(f"\n  Devices ({len(config.devices)}):")
    for device in config.devices:
        names = ", ".join(r.name for r in device.register_map)
        print(f"    - {device.name:<24} every {device.scan_interval}s: {names}")
    print(
        f"\n  Health threshold: {policy(config.devices)} "
        f"({config.health.threshold_policy.value})"
    )
    if config.status.port:
        print(f"  Status server: {config.status.host}:{config.status.port}")
    else:
        print("  Status server: disabled")
    print("=" * 60 + "\n")


async def run_gateway(config: GatewayConfig) -> None:
    """Run the lifecycle manager and status server until stopped"""
    bus = create_bus(config.bus)
    sink = create_sink(config.sink)
    manager = ConnectionLifecycleManager(
        bus,
        sink,
        config.devices,
        config.reconnect,
        threshold_policy=select_threshold_policy(config.health.threshold_policy),
    )
    status_server = StatusServer(manager, config.status) if config.status.port else None

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, manager.stop)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda s, f: manager.stop())

    try:
        if status_server:
            await status_server.start()
        await manager.run_forever()
    finally:
        if status_server:
            await status_server.stop()
        await sink.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fieldgate",
        description="Modbus to InfluxDB gateway",
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Write logs to this file instead of stdout",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default=None,
        help="Log level (default: $FIELDGATE_LOG_LEVEL or info)",
    )
    parser.add_argument(
        "--log-format",
        choices=("json", "text"),
        default=None,
        help="Log format (default: $FIELDGATE_LOG_FORMAT or json)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print configuration and exit without starting the gateway",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    json_format = None if args.log_format is None else args.log_format == "json"
    setup_logging(args.log_level, json_format, args.log_file)

    try:
        config = load_config_file(args.config)
    except ConfigError as e:
        logger.error(str(e))
        print(str(e), file=sys.stderr)
        return 2

    if args.dry_run:
        print_config_summary(config)
        print("Dry run mode - exiting without starting gateway")
        return 0

    logger.info(f"Loaded configuration from {args.config}")

    try:
        asyncio.run(run_gateway(config))
    except KeyboardInterrupt:
        logger.info("Stopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
