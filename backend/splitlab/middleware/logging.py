"""Structured logging middleware with correlation IDs."""
import structlog
import uuid
import logging
import re
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Callable, Optional
import time

from splitlab.config import get_settings

settings = get_settings()

EXPERIMENT_PATH = re.compile(r"^/experiments/([^/]+)")

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.log_level.upper())
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=False
)

logger = structlog.get_logger()


def experiment_id_from_path(path: str) -> Optional[str]:
    """Experiment id of an `/experiments/{id}/...` path, or None."""
    match = EXPERIMENT_PATH.match(path)
    return match.group(1) if match else None


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add correlation IDs and log all requests.

    Adds a unique trace_id to each request so assignment and event logs of
    one request can be tied together. Requests for a single experiment also
    bind its experiment_id, so every log line of the request carries it.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        # Generate correlation ID
        trace_id = str(uuid.uuid4())
        request.state.trace_id = trace_id

        # Bind trace_id (and experiment_id when present) to structlog context
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(trace_id=trace_id)

        experiment_id = experiment_id_from_path(request.url.path)
        if experiment_id:
            request.state.experiment_id = experiment_id
            structlog.contextvars.bind_contextvars(experiment_id=experiment_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None
        )

        start_time = time.time()
        try:
            response = await call_next(request)
            latency_ms = int((time.time() - start_time) * 1000)

            logger.info(
                "request_completed",
                status_code=response.status_code,
                latency_ms=latency_ms
            )

            response.headers["X-Trace-ID"] = trace_id

            return response

        except Exception as e:
            latency_ms = int((time.time() - start_time) * 1000)

            logger.error(
                "request_failed",
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=latency_ms
            )
            raise


def get_logger():
    """Get configured structured logger."""
    return logger
