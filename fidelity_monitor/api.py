"""
Fidelity Monitor API Endpoints.

============================================================
PURPOSE
============================================================
HTTP API over the monitor's read accessors.

PRINCIPLES:
- Endpoints are READ-ONLY
- The single POST is the manual reconnect affordance and
  touches transport state only
- Pure data retrieval, no monitor state mutation

============================================================
"""

import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any

from aiohttp import web

from core.clock import now_utc
from core.exceptions import MonitorException

from .monitor import FidelityMonitor


logger = logging.getLogger(__name__)


DEFAULT_LIST_LIMIT = 20


# ============================================================
# JSON ENCODER
# ============================================================

class MonitorEncoder(json.JSONEncoder):
    """JSON encoder for monitor data."""

    def default(self, obj):
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        return super().default(obj)


def json_response(data: Any, status: int = 200) -> web.Response:
    """Create JSON response."""
    return web.Response(
        text=json.dumps(data, cls=MonitorEncoder, indent=2),
        status=status,
        content_type="application/json",
    )


def error_response(error: str, status: int = 500) -> web.Response:
    return json_response({"status": "error", "error": error}, status=status)


def _parse_limit(request: web.Request) -> int:
    """Read ?limit=, raising ValueError for junk or negatives."""
    limit = int(request.query.get("limit", DEFAULT_LIST_LIMIT))
    if limit < 0:
        raise ValueError("limit must be >= 0")
    return limit


# ============================================================
# API HANDLERS
# ============================================================

class MonitorAPI:
    """HTTP API for the fidelity monitor."""

    def __init__(self, monitor: FidelityMonitor):
        self._monitor = monitor

    async def get_overview(self, request: web.Request) -> web.Response:
        """
        GET /api/fidelity/overview

        Complete monitor overview.
        """
        try:
            return json_response({"status": "ok", "data": self._monitor.overview()})
        except Exception as e:
            logger.error(f"Error getting overview: {e}")
            return error_response(str(e))

    async def get_fidelity(self, request: web.Request) -> web.Response:
        """GET /api/fidelity/fidelity"""
        try:
            return json_response({"status": "ok", "data": self._monitor.current()})
        except Exception as e:
            logger.error(f"Error getting fidelity: {e}")
            return error_response(str(e))

    async def get_history(self, request: web.Request) -> web.Response:
        """
        GET /api/fidelity/history

        Retained samples, oldest first.
        """
        try:
            samples = [
                {"score": s.score, "timestamp": s.timestamp.isoformat()}
                for s in self._monitor.history()
            ]
            return json_response({"status": "ok", "data": {"samples": samples}})
        except Exception as e:
            logger.error(f"Error getting history: {e}")
            return error_response(str(e))

    async def get_alerts(self, request: web.Request) -> web.Response:
        """
        GET /api/fidelity/alerts

        Query params:
        - limit: Max number of alerts (default 20)
        """
        try:
            limit = _parse_limit(request)
        except ValueError as e:
            return error_response(f"Invalid limit: {e}", status=400)

        try:
            return json_response({
                "status": "ok",
                "data": {
                    "alerts": self._monitor.recent_alerts(limit),
                    "violation_count": self._monitor.violation_count(),
                    "reported_violation_count": self._monitor.reported_violation_count(),
                },
            })
        except Exception as e:
            logger.error(f"Error getting alerts: {e}")
            return error_response(str(e))

    async def get_escalations(self, request: web.Request) -> web.Response:
        """
        GET /api/fidelity/escalations

        Query params:
        - limit: Max number of escalations (default 20)
        """
        try:
            limit = _parse_limit(request)
        except ValueError as e:
            return error_response(f"Invalid limit: {e}", status=400)

        try:
            return json_response({
                "status": "ok",
                "data": {"escalations": self._monitor.recent_escalations(limit)},
            })
        except Exception as e:
            logger.error(f"Error getting escalations: {e}")
            return error_response(str(e))

    async def get_subscriptions(self, request: web.Request) -> web.Response:
        """GET /api/fidelity/subscriptions"""
        try:
            return json_response({"status": "ok", "data": self._monitor.subscriptions()})
        except Exception as e:
            logger.error(f"Error getting subscriptions: {e}")
            return error_response(str(e))

    async def get_connection(self, request: web.Request) -> web.Response:
        """GET /api/fidelity/connection"""
        try:
            return json_response({"status": "ok", "data": self._monitor.connection_status()})
        except Exception as e:
            logger.error(f"Error getting connection status: {e}")
            return error_response(str(e))

    async def reconnect(self, request: web.Request) -> web.Response:
        """
        POST /api/fidelity/reconnect

        Manual reconnect. Resets the automatic retry budget.
        """
        try:
            status = await self._monitor.reconnect()
            return json_response({"status": "ok", "data": status})
        except MonitorException as e:
            logger.error(e.to_log_format())
            return json_response({"status": "error", "error": e.message, "detail": e.to_dict()}, status=500)
        except Exception as e:
            logger.error(f"Error reconnecting: {e}")
            return error_response(str(e))

    async def health(self, request: web.Request) -> web.Response:
        """
        GET /api/fidelity/health

        Service health check.
        """
        status = self._monitor.connection_status()
        return json_response({
            "status": "ok",
            "timestamp": now_utc().isoformat(),
            "service": "fidelity-monitor",
            "connection": status.state.value,
            "level": self._monitor.current().level.value,
        })


# ============================================================
# ROUTER FACTORY
# ============================================================

def create_monitor_app(monitor: FidelityMonitor) -> web.Application:
    """
    Create monitor API application.

    Returns an aiohttp Application with all routes configured.
    """
    api = MonitorAPI(monitor)

    app = web.Application()

    app.router.add_get("/health", api.health)
    app.router.add_get("/overview", api.get_overview)
    app.router.add_get("/fidelity", api.get_fidelity)
    app.router.add_get("/history", api.get_history)
    app.router.add_get("/alerts", api.get_alerts)
    app.router.add_get("/escalations", api.get_escalations)
    app.router.add_get("/subscriptions", api.get_subscriptions)
    app.router.add_get("/connection", api.get_connection)

    # Only non-read endpoint - transport only
    app.router.add_post("/reconnect", api.reconnect)

    return app


def setup_monitor_routes(
    app: web.Application,
    monitor: FidelityMonitor,
    prefix: str = "/api/fidelity",
) -> None:
    """Add monitor routes to an existing application."""
    app.add_subapp(prefix, create_monitor_app(monitor))
