"""
NeuroSynth DCS - Structured Logging Configuration
=================================================

structlog setup shared by the pipeline and the API.

Every log line emitted while an extract() call is running carries the
request id, the orchestrator state and the refinement iteration, so one
request can be followed across normalizer, extractor, merger and validator
logs. Pipeline modules keep using ``logging.getLogger(__name__)``; their
records are rendered through the same structlog processors.

Usage:
    from dcsynth.core.logging_config import configure_logging
    configure_logging(json_output=True)

    logger = logging.getLogger(__name__)
    logger.info("Notes normalized")
    # {"event": "Notes normalized", "request_id": "3f2a91c0", "stage": "extracting", "iteration": 1, ...}

Environment Variables:
    LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    LOG_FORMAT: json, console (default: json in production, console in dev)
    ENVIRONMENT: production/staging enables JSON by default
"""

import logging
import logging.config
import os
import time
import uuid
from contextvars import ContextVar
from typing import Optional

import structlog
from structlog.types import EventDict, WrappedLogger

SERVICE_NAME = "dcsynth"

SECRET_KEYS = ("api_key", "apikey", "authorization", "x-api-key")

QUIET_LOGGERS = ("httpx", "httpcore", "anthropic", "asyncio", "uvicorn.access")


# =============================================================================
# REQUEST CONTEXT
# =============================================================================

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
stage_var: ContextVar[Optional[str]] = ContextVar("pipeline_stage", default=None)
iteration_var: ContextVar[Optional[int]] = ContextVar("pipeline_iteration", default=None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_request_id(request_id: Optional[str]) -> None:
    request_id_var.set(request_id)


def generate_request_id() -> str:
    return uuid.uuid4().hex[:8]


def bind_stage(stage: Optional[str]) -> None:
    """Bind the current orchestrator state to log context."""
    stage_var.set(stage)


def bind_iteration(iteration: Optional[int]) -> None:
    """Bind the current refinement iteration to log context."""
    iteration_var.set(iteration)


def clear_pipeline_context() -> None:
    stage_var.set(None)
    iteration_var.set(None)


# =============================================================================
# PROCESSORS
# =============================================================================

def add_pipeline_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Attach request id, stage and iteration when an extraction is running."""
    for key, var in (("request_id", request_id_var), ("stage", stage_var), ("iteration", iteration_var)):
        value = var.get()
        if value is not None:
            event_dict.setdefault(key, value)
    event_dict["service"] = SERVICE_NAME
    return event_dict


def redact_secrets(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask provider credentials passed as log fields."""
    for key in list(event_dict):
        if key.lower() in SECRET_KEYS and event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def _use_json(json_output: Optional[bool]) -> bool:
    if json_output is not None:
        return json_output
    log_format = os.getenv("LOG_FORMAT", "").lower()
    if log_format in ("json", "console"):
        return log_format == "json"
    return os.getenv("ENVIRONMENT", "development").lower() in ("production", "prod", "staging")


# =============================================================================
# CONFIGURATION
# =============================================================================

def configure_logging(
    json_output: Optional[bool] = None,
    log_level: Optional[str] = None,
    include_timestamp: bool = True
) -> None:
    """
    Configure structlog and route stdlib logging through it.

    Args:
        json_output: JSON lines if True, colored console if False, auto-detect if None
        log_level: Level name; defaults to LOG_LEVEL
        include_timestamp: Prefix records with a UTC ISO timestamp
    """
    level_name = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    as_json = _use_json(json_output)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        add_pipeline_context,
        redact_secrets,
    ]
    if include_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if as_json:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structlog": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
                "foreign_pre_chain": shared_processors,
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": "structlog",
            },
        },
        "root": {"handlers": ["default"], "level": level_name},
        "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
    })

    structlog.get_logger(__name__).debug(
        "Logging configured", format="json" if as_json else "console", level=level_name
    )


# =============================================================================
# FASTAPI MIDDLEWARE
# =============================================================================

class RequestLoggingMiddleware:
    """
    ASGI middleware: one request id per HTTP request, shared with the
    orchestrator, plus a completion line with status and duration.
    """

    def __init__(self, app):
        self.app = app
        self.logger = structlog.get_logger("dcsynth.request")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers") or [])
        request_id = headers.get(b"x-request-id", b"").decode("latin-1") or generate_request_id()
        set_request_id(request_id)
        method, path = scope.get("method", "UNKNOWN"), scope.get("path", "/")
        started = time.perf_counter()
        status_code = 500

        async def send_with_request_id(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 500)
                message.setdefault("headers", [])
                message["headers"] = list(message["headers"]) + [(b"x-request-id", request_id.encode("latin-1"))]
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            log = self.logger.info if status_code < 400 else self.logger.warning
            log(
                "Request completed",
                method=method,
                path=path,
                status_code=status_code,
                duration_ms=int((time.perf_counter() - started) * 1000),
            )
            set_request_id(None)
            clear_pipeline_context()
