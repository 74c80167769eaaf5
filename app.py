#!/usr/bin/env python3
"""
Constitutional Fidelity Monitor - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
Runs the fidelity monitor until SIGINT/SIGTERM.

- Loads configuration from CLI and environment (.env)
- Connects to the monitoring endpoint with bounded reconnects
- Optionally serves the read-only HTTP API
- Handles all signals gracefully

============================================================
USAGE
============================================================
Direct execution:
    python app.py --url ws://localhost:8004/api/v1/ws/fidelity-monitor

Follow workflows and serve the API:
    python app.py --workflow wf-1 --workflow wf-2 --serve-api --api-port 8080

Environment-based configuration:
    FIDELITY_MONITOR_URL=wss://governance/api/v1/ws/fidelity-monitor python app.py

============================================================
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from aiohttp import web

from core.exceptions import ConfigurationError
from fidelity_monitor import FidelityMonitor, MonitorConfig, setup_monitor_routes


logger = logging.getLogger(__name__)


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="fidelity-monitor",
        description="Real-time constitutional fidelity monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                   # Endpoint from FIDELITY_MONITOR_URL
  %(prog)s --url ws://localhost:8004/api/v1/ws/fidelity-monitor
  %(prog)s --workflow wf-1 --serve-api       # Follow a workflow, serve HTTP API
        """
    )

    # --------------------------------------------------------
    # Connection Options
    # --------------------------------------------------------
    connection_group = parser.add_argument_group("Connection Options")

    connection_group.add_argument(
        "--url",
        type=str,
        metavar="WS_URL",
        help="Monitoring endpoint (default: FIDELITY_MONITOR_URL)",
    )

    connection_group.add_argument(
        "--max-reconnect-attempts",
        type=int,
        metavar="N",
        help="Automatic reconnect attempts before giving up (default: 5)",
    )

    connection_group.add_argument(
        "--workflow", "-w",
        action="append",
        default=[],
        metavar="WORKFLOW_ID",
        help="Subscribe to a workflow (repeatable)",
    )

    # --------------------------------------------------------
    # Refresh Options
    # --------------------------------------------------------
    refresh_group = parser.add_argument_group("Refresh Options")

    refresh_group.add_argument(
        "--refresh-interval",
        type=float,
        metavar="SECONDS",
        help="Snapshot refresh interval in seconds (default: 30)",
    )

    refresh_group.add_argument(
        "--no-auto-refresh",
        action="store_true",
        help="Disable periodic snapshot requests",
    )

    # --------------------------------------------------------
    # API Options
    # --------------------------------------------------------
    api_group = parser.add_argument_group("API Options")

    api_group.add_argument(
        "--serve-api",
        action="store_true",
        help="Serve the read-only HTTP API",
    )

    api_group.add_argument(
        "--api-host",
        type=str,
        metavar="HOST",
        help="API bind host (default: FIDELITY_API_HOST or 0.0.0.0)",
    )

    api_group.add_argument(
        "--api-port",
        type=int,
        metavar="PORT",
        help="API bind port (default: FIDELITY_API_PORT or 8080)",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 0.1.0",
    )

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate CLI arguments.

    Returns:
        List of validation errors
    """
    errors = []

    if args.refresh_interval is not None and args.refresh_interval <= 0:
        errors.append("--refresh-interval must be positive")

    if args.max_reconnect_attempts is not None and args.max_reconnect_attempts < 0:
        errors.append("--max-reconnect-attempts must be >= 0")

    if args.api_port is not None and not 0 < args.api_port < 65536:
        errors.append("--api-port must be between 1 and 65535")

    if args.url and not args.url.startswith(("ws://", "wss://")):
        errors.append("--url must be a ws:// or wss:// URL")

    if any(not wf.strip() for wf in args.workflow):
        errors.append("--workflow must not be empty")

    return errors


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace) -> MonitorConfig:
    """
    Build monitor configuration from environment, then CLI overrides.

    Raises:
        ConfigurationError: If the resulting configuration is invalid
    """
    config = MonitorConfig.from_env(url=args.url)

    if args.max_reconnect_attempts is not None:
        config.reconnect.max_attempts = args.max_reconnect_attempts
    if args.refresh_interval is not None:
        config.refresh.interval_seconds = args.refresh_interval
    if args.no_auto_refresh:
        config.refresh.auto_refresh = False

    if args.serve_api:
        config.api.enabled = True
    if args.api_host:
        config.api.host = args.api_host
    if args.api_port is not None:
        config.api.port = args.api_port

    return config.validate()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )


def print_banner(config: MonitorConfig, workflows: List[str]) -> None:
    """Print startup banner."""
    print()
    print("=" * 60)
    print("  CONSTITUTIONAL FIDELITY MONITOR")
    print("=" * 60)
    print(f"  Endpoint:   {config.url}")
    print(f"  Reconnect:  {config.reconnect.max_attempts} attempts, "
          f"{config.reconnect.base_delay_seconds:g}s-{config.reconnect.max_delay_seconds:g}s")
    if config.refresh.auto_refresh:
        print(f"  Refresh:    every {config.refresh.interval_seconds:g}s")
    else:
        print("  Refresh:    disabled")
    if workflows:
        print(f"  Workflows:  {', '.join(workflows)}")
    if config.api.enabled:
        print(f"  API:        http://{config.api.host}:{config.api.port}{config.api.prefix}")
    print("=" * 60)
    print()


# ============================================================
# APPLICATION
# ============================================================

async def run_application(config: MonitorConfig, workflows: List[str]) -> int:
    """
    Run the monitor until a shutdown signal.

    Returns:
        Exit code
    """
    monitor = FidelityMonitor(config)
    shutdown = asyncio.Event()
    runner: Optional[web.AppRunner] = None

    loop = asyncio.get_running_loop()
    installed = []
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, shutdown.set)
            installed.append(sig)

    try:
        await monitor.start()

        if not monitor.connection_status().is_connected:
            logger.warning(
                f"Not connected yet ({monitor.connection_status().describe()}), "
                f"workflow subscriptions may be dropped"
            )
        for workflow_id in workflows:
            await monitor.subscribe(workflow_id)

        if config.api.enabled:
            app = web.Application()
            setup_monitor_routes(app, monitor, prefix=config.api.prefix)
            runner = web.AppRunner(app)
            await runner.setup()
            site = web.TCPSite(runner, config.api.host, config.api.port)
            await site.start()
            logger.info(f"API listening on {config.api.host}:{config.api.port}{config.api.prefix}")

        logger.info("Monitor running (press Ctrl+C to stop)...")
        await shutdown.wait()
        logger.info("Shutdown requested")
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        if runner is not None:
            await runner.cleanup()
        await monitor.stop()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    configure_logging(args.log_level)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    print_banner(config, args.workflow)

    return asyncio.run(run_application(config, args.workflow))


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
