"""
Process Health - HTTP API.

============================================================
ROUTES
============================================================

GET    /ping                       Liveness
GET    /health/status              Live scored process list
GET    /health/status?action=start-monitoring
POST   /health/status              Collect one sample now
GET    /health/{process_id}        History + summary (?timeRange=hours)
POST   /health/{process_id}        Record one sample (JSON body = extra metrics)
DELETE /health/{process_id}        Forget a process history
GET    /historical                 Time series (?period=&processId=)

============================================================
ERRORS
============================================================

ProcessNotFound                      -> 404
InvalidPeriodToken / bad parameters  -> 400
SourceUnavailable / StorageUnavailable -> 503

============================================================
"""

import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional

from aiohttp import web

from .exceptions import (
    HealthMonitorError,
    InvalidPeriodToken,
    ProcessNotFound,
    SourceUnavailable,
    StorageUnavailable,
)
from .monitor import MonitorState
from .service import HealthService


logger = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("health_service", HealthService)
AUTOSTART_KEY = web.AppKey("autostart_monitor", bool)


# ============================================================
# JSON ENCODER
# ============================================================

class HealthEncoder(json.JSONEncoder):
    """JSON encoder for health data."""

    def default(self, obj):
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        if hasattr(obj, "value"):  # Enums
            return obj.value
        return super().default(obj)


def json_response(data: Any, status: int = 200) -> web.Response:
    """Create JSON response."""
    return web.Response(
        text=json.dumps(data, cls=HealthEncoder, indent=2),
        status=status,
        content_type="application/json",
    )


def error_response(error: str, status: int, details: Optional[dict] = None) -> web.Response:
    body = {"status": "error", "error": error}
    if details:
        body["details"] = details
    return json_response(body, status=status)


def _status_for(error: HealthMonitorError) -> int:
    if isinstance(error, ProcessNotFound):
        return 404
    if isinstance(error, InvalidPeriodToken):
        return 400
    if isinstance(error, (SourceUnavailable, StorageUnavailable)):
        return 503
    return 500


# ============================================================
# API HANDLERS
# ============================================================

class HealthAPI:
    """HTTP handlers over a HealthService."""

    def __init__(self, service: HealthService):
        self._service = service

    @staticmethod
    def _process_id(request: web.Request) -> int:
        raw = request.match_info.get("process_id", "")
        try:
            return int(raw)
        except ValueError:
            raise web.HTTPBadRequest(
                text=json.dumps({"status": "error", "error": f"Invalid process id: {raw!r}"}),
                content_type="application/json",
            )

    def _handle_error(self, error: HealthMonitorError, context: str) -> web.Response:
        status = _status_for(error)
        if status >= 500:
            logger.error(f"Error {context}: {error.message}")
        else:
            logger.info(f"Rejected {context}: {error.message}")
        return error_response(error.message, status, error.details)

    # --------------------------------------------------------
    # SERVICE
    # --------------------------------------------------------

    async def ping(self, request: web.Request) -> web.Response:
        """GET /ping"""
        return json_response({
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": "process-health",
            "data_source": self._service.data_source,
            "monitoring": self._service.monitor.state.value,
        })

    # --------------------------------------------------------
    # STATUS
    # --------------------------------------------------------

    async def get_status(self, request: web.Request) -> web.Response:
        """
        GET /health/status

        Live scored process list, or start the monitor loop with
        ?action=start-monitoring.
        """
        try:
            if request.query.get("action") == "start-monitoring":
                return await self._start_monitoring()
            status = await self._service.get_current_status()
            return json_response({"status": "ok", "data": status})
        except HealthMonitorError as e:
            return self._handle_error(e, "getting current status")
        except Exception as e:
            logger.error(f"Error getting current status: {e}", exc_info=True)
            return error_response(str(e), 500)

    async def _start_monitoring(self) -> web.Response:
        started = await self._service.start_monitoring()
        if started:
            message = "Health monitoring started"
        elif self._service.monitor.state == MonitorState.RUNNING:
            message = "Health monitoring already running"
        else:
            message = "Health monitoring was stopped and cannot be restarted"
        return json_response({
            "status": "ok",
            "message": message,
            "started": started,
            "monitoring": self._service.monitor.state.value,
        })

    async def collect_now(self, request: web.Request) -> web.Response:
        """POST /health/status"""
        try:
            tick = await self._service.collect_now()
            return json_response({"status": "ok", "data": tick.to_dict()})
        except HealthMonitorError as e:
            return self._handle_error(e, "collecting health")
        except Exception as e:
            logger.error(f"Error collecting health: {e}", exc_info=True)
            return error_response(str(e), 500)

    # --------------------------------------------------------
    # PER-PROCESS
    # --------------------------------------------------------

    async def get_process_health(self, request: web.Request) -> web.Response:
        """GET /health/{process_id}?timeRange=24"""
        process_id = self._process_id(request)
        try:
            period_hours = float(request.query.get("timeRange", "24"))
        except ValueError:
            return error_response("timeRange must be a number of hours", 400)
        if not math.isfinite(period_hours) or period_hours <= 0:
            return error_response("timeRange must be a positive number of hours", 400)

        try:
            report = await self._service.get_health(process_id, period_hours)
            return json_response({
                "status": "ok",
                "data": report.to_dict(),
                "data_source": self._service.data_source,
            })
        except HealthMonitorError as e:
            return self._handle_error(e, f"getting health for process {process_id}")
        except Exception as e:
            logger.error(f"Error getting health for process {process_id}: {e}", exc_info=True)
            return error_response(str(e), 500)

    async def record_process_health(self, request: web.Request) -> web.Response:
        """POST /health/{process_id} with optional JSON body of extra metrics."""
        process_id = self._process_id(request)
        extra = {}
        if request.can_read_body:
            try:
                extra = await request.json()
            except ValueError:
                return error_response("Body must be a JSON object", 400)
            if not isinstance(extra, dict):
                return error_response("Body must be a JSON object", 400)

        try:
            metric = await self._service.record_health(process_id, extra)
            return json_response({"status": "ok", "data": metric.to_dict()})
        except ValueError as e:
            return error_response(str(e), 400)
        except HealthMonitorError as e:
            return self._handle_error(e, f"recording health for process {process_id}")
        except Exception as e:
            logger.error(f"Error recording health for process {process_id}: {e}", exc_info=True)
            return error_response(str(e), 500)

    async def delete_process_health(self, request: web.Request) -> web.Response:
        """DELETE /health/{process_id}"""
        process_id = self._process_id(request)
        try:
            removed = await self._service.forget_process(process_id)
            return json_response({
                "status": "ok",
                "message": f"Removed {removed} samples for process {process_id}",
                "removed": removed,
            })
        except HealthMonitorError as e:
            return self._handle_error(e, f"deleting health for process {process_id}")

    # --------------------------------------------------------
    # HISTORICAL
    # --------------------------------------------------------

    async def get_historical(self, request: web.Request) -> web.Response:
        """GET /historical?period=24h&processId=3&strict=true"""
        period = request.query.get("period", "24h")
        strict = request.query.get("strict", "").lower() in ("1", "true", "yes")

        process_id = None
        raw_process = request.query.get("processId")
        if raw_process:
            try:
                process_id = int(raw_process)
            except ValueError:
                return error_response(f"Invalid processId: {raw_process!r}", 400)

        try:
            result = await self._service.get_historical(period, process_id=process_id, strict=strict)
            return json_response({
                "status": "ok",
                "data": result.to_dict(),
                "data_source": self._service.data_source,
            })
        except HealthMonitorError as e:
            return self._handle_error(e, f"querying history ({period})")
        except Exception as e:
            logger.error(f"Error querying history ({period}): {e}", exc_info=True)
            return error_response(str(e), 500)


# ============================================================
# APPLICATION FACTORY
# ============================================================

async def _on_startup(app: web.Application) -> None:
    if app[AUTOSTART_KEY]:
        await app[SERVICE_KEY].start_monitoring()


async def _on_cleanup(app: web.Application) -> None:
    await app[SERVICE_KEY].close()


def create_health_app(
    service: HealthService,
    autostart_monitor: bool = False,
) -> web.Application:
    """
    Create the health API application.

    The application owns the service lifecycle: the monitor loop
    starts with the app (when autostart_monitor is set) and the
    service is closed on cleanup.
    """
    api = HealthAPI(service)

    app = web.Application()
    app[SERVICE_KEY] = service
    app[AUTOSTART_KEY] = autostart_monitor

    app.router.add_get("/ping", api.ping)
    app.router.add_get("/health/status", api.get_status)
    app.router.add_post("/health/status", api.collect_now)
    app.router.add_get("/health/{process_id}", api.get_process_health)
    app.router.add_post("/health/{process_id}", api.record_process_health)
    app.router.add_delete("/health/{process_id}", api.delete_process_health)
    app.router.add_get("/historical", api.get_historical)

    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)
    return app
