"""
Dashboard Module - Crash Risk API
"""
from src.dashboard.risk_api import (
    app,
    run_dashboard,
    set_monitor,
    start_dashboard_async,
)

__all__ = [
    "app",
    "run_dashboard",
    "set_monitor",
    "start_dashboard_async",
]
