import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from app.metrics import record_http_request


SERVICE_NAME = "whatsapp-bridge"

# uvicorn loggers re-pointed at our JSON handler; access is replaced by the middleware
UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

# httpx logs every Graph API call at INFO, URL (phone number id) included
QUIET_LOGGERS = ("httpx", "httpcore")

# Orchestrator probes and scrapes; logged at DEBUG only
PROBE_PATHS = ("/health/live", "/health/ready", "/metrics")

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    return request_id_ctx.get()


class BridgeJsonFormatter(jsonlogger.JsonFormatter):
    """JSON lines with an ISO-8601 `ts`, `level`, `service` and the request_id."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not log_record.get('ts'):
            now = datetime.now(timezone.utc)
            log_record['ts'] = now.strftime('%Y-%m-%dT%H:%M:%S.') + f"{now.microsecond // 1000:03d}Z"
        log_record['level'] = record.levelname
        log_record.setdefault('service', SERVICE_NAME)

        if 'request_id' not in log_record:
            req_id = get_request_id()
            if req_id:
                log_record['request_id'] = req_id


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """
    Send every log line of the bridge, uvicorn included, to stdout as JSON.

    Args:
        log_level: root level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(BridgeJsonFormatter('%(ts)s %(level)s %(name)s %(message)s'))

    root = logging.getLogger()
    root.setLevel(log_level.upper())
    root.handlers = [handler]

    for name in UVICORN_LOGGERS:
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False
    logging.getLogger("uvicorn.access").disabled = True

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def _level_for(path: str, status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    if path in PROBE_PATHS:
        return logging.DEBUG
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One "Request completed" line per request, plus HTTP metrics.

    The line carries request_id (also returned as X-Request-ID), method,
    path, status and latency_ms, and whatever the route attached with
    log_request_data: the ingestion summary for POST /webhook, message_id
    and result for POST /send. Only the path is logged, never the query
    string, so hub.verify_token stays out of the logs.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            latency_seconds = time.perf_counter() - start_time
            path = request.url.path

            if path != "/metrics":
                record_http_request(
                    method=request.method,
                    path=path,
                    status=response.status_code,
                    latency_seconds=latency_seconds,
                )

            log_data = {
                "request_id": request_id,
                "method": request.method,
                "path": path,
                "status": response.status_code,
                "latency_ms": round(latency_seconds * 1000, 2),
            }
            log_data.update(getattr(request.state, "extra_log_data", {}))

            logging.getLogger("app.requests").log(
                _level_for(path, response.status_code), "Request completed", extra=log_data
            )
            return response
        finally:
            request_id_ctx.reset(token)


def log_request_data(request: Request, **fields) -> None:
    """
    Attach extra fields to the request state.
    They are merged into the request log line by the middleware.
    """
    data = getattr(request.state, "extra_log_data", {})
    data.update({k: v for k, v in fields.items() if v is not None})
    request.state.extra_log_data = data
