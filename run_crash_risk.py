#!/usr/bin/env python3
"""
Crash Risk Monitor Entry Point
Proper signal handling for systemd service

Usage:
  python run_crash_risk.py                          # Default coins, API on 8890
  python run_crash_risk.py --coins BTC ETH HYPE     # Custom coin set
  python run_crash_risk.py --venues "" xyz          # Main dex plus a builder dex
  python run_crash_risk.py --no-dashboard --duration 120
"""
import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path (works with absolute paths)
PROJECT_ROOT = Path(__file__).parent.resolve()
sys.path.insert(0, str(PROJECT_ROOT))
os.chdir(PROJECT_ROOT)  # Ensure working directory is correct

import structlog
from config import settings
from src.dashboard.risk_api import set_monitor, start_dashboard_async
from src.risk.monitor import CrashRiskMonitor

logger = structlog.get_logger(__name__)


def parse_args():
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Crash Risk Monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_crash_risk.py
  python run_crash_risk.py --coins BTC ETH HYPE
  python run_crash_risk.py --no-dashboard --duration 120
        """
    )
    parser.add_argument(
        "--coins",
        nargs="+",
        default=None,
        help=f"Coins to monitor (default: {' '.join(settings.COINS)})"
    )
    parser.add_argument(
        "--venues",
        nargs="+",
        default=None,
        help='Settlement venues / dexes ("" = main perp dex)'
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.DASHBOARD_PORT,
        help=f"Dashboard API port (default: {settings.DASHBOARD_PORT})"
    )
    parser.add_argument(
        "--no-dashboard",
        action="store_true",
        help="Run the monitor without the HTTP API"
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Minimum log level (default: info)"
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=None,
        help="Stop after N seconds (default: run forever)"
    )
    return parser.parse_args()


def configure_logging(level: str) -> None:
    """Console output filtered at `level`"""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=True,
    )


async def run_crash_risk(
    coins: Optional[List[str]] = None,
    venues: Optional[List[str]] = None,
    dashboard_port: int = settings.DASHBOARD_PORT,
    enable_dashboard: bool = True,
    duration_seconds: Optional[int] = None,
) -> None:
    """Run the monitor (and API) until a shutdown signal or the duration elapses"""
    monitor = CrashRiskMonitor(coins=coins, venues=venues)
    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, shutdown_event.set)

    dashboard_task = None
    try:
        await monitor.start()
        if enable_dashboard:
            set_monitor(monitor)
            dashboard_task = asyncio.create_task(
                start_dashboard_async(host=settings.DASHBOARD_HOST, port=dashboard_port)
            )
            logger.info("dashboard_started", port=dashboard_port)

        if duration_seconds:
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=duration_seconds)
            except asyncio.TimeoutError:
                pass
        else:
            await shutdown_event.wait()
        logger.info("shutdown_signal_received")
    finally:
        if dashboard_task is not None:
            dashboard_task.cancel()
            await asyncio.gather(dashboard_task, return_exceptions=True)
        set_monitor(None)
        await monitor.stop()


def main():
    """Main entry point with proper signal handling"""
    args = parse_args()
    configure_logging(args.log_level)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    # Global exception handler
    def global_exception_handler(loop, context):
        exception = context.get("exception")
        message = context.get("message", "Unknown error")
        logger.error(
            "uncaught_async_exception",
            message=message,
            exception=str(exception) if exception else "None",
        )

    loop.set_exception_handler(global_exception_handler)

    try:
        loop.run_until_complete(run_crash_risk(
            coins=args.coins,
            venues=args.venues,
            dashboard_port=args.port,
            enable_dashboard=not args.no_dashboard,
            duration_seconds=args.duration,
        ))
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")
    finally:
        logger.info("cleaning_up_tasks")

        pending = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()

        if pending:
            try:
                loop.run_until_complete(asyncio.wait(pending, timeout=10.0))
            except Exception as e:
                logger.warning("cleanup_error", error=str(e))

        try:
            loop.close()
        except Exception as e:
            logger.warning("loop_close_error", error=str(e))

        logger.info("crash_risk_shutdown_complete")


if __name__ == "__main__":
    main()
