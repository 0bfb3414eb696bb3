# logging.py
from __future__ import annotations

import logging
import logging.config
import os
import time
from contextlib import contextmanager
from uuid import uuid4

import structlog
from starlette.middleware.base import BaseHTTPMiddleware


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def _env_flag(name: str) -> bool:
    return os.getenv(name, "0").strip().lower() in ("1", "true", "yes")


def _coerce_level(value: str | int | None, default: int = logging.INFO) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value).upper()) if value else None
    return level if isinstance(level, int) else default


def build_logging_config(renderer, level: int, access_level: int, sql_level: int) -> dict:
    """dictConfig for the root logger and the uvicorn, SQLAlchemy and httpx loggers."""

    def logger(lvl: int) -> dict:
        # propagate=False so each record renders once
        return {"handlers": ["store"], "level": logging.getLevelName(lvl), "propagate": False}

    loggers = {name: logger(level) for name in ("", "uvicorn", "uvicorn.error")}
    loggers["uvicorn.access"] = logger(access_level)
    loggers["sqlalchemy.engine"] = logger(sql_level)
    loggers["httpx"] = logger(max(level, logging.WARNING))

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "store": {
                "()": "structlog.stdlib.ProcessorFormatter",
                "processor": renderer,
                "foreign_pre_chain": _shared_processors(),
            },
        },
        "handlers": {
            "store": {"class": "logging.StreamHandler", "formatter": "store"},
        },
        "loggers": loggers,
    }


def configure_logging(
    *,
    use_json: bool | None = None,
    level: str | int | None = None,
    colors: bool = True,
    uvicorn_access_level: str | int | None = None,
    sql_echo: bool | None = None,
) -> None:
    """
    Send store, uvicorn, SQLAlchemy and httpx logs through one structlog
    renderer (JSON or console).

    Environment fallbacks:
      LOG_JSON=1|0
      LOG_LEVEL=DEBUG|INFO|WARNING|ERROR
      LOG_UVICORN_ACCESS=INFO|WARNING|ERROR
      LOG_SQL=1|0   (SQL statements at INFO)
    """
    if use_json is None:
        use_json = _env_flag("LOG_JSON")
    if sql_echo is None:
        sql_echo = _env_flag("LOG_SQL")
    lvl = _coerce_level(level or os.getenv("LOG_LEVEL"))
    access = _coerce_level(uvicorn_access_level or os.getenv("LOG_UVICORN_ACCESS"), default=logging.WARNING)

    renderer = structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer(colors=colors)
    logging.config.dictConfig(
        build_logging_config(renderer, lvl, access, logging.INFO if sql_echo else logging.WARNING)
    )

    structlog.configure(
        # wrap_for_formatter last so ProcessorFormatter does the rendering
        processors=[*_shared_processors(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(lvl),
        cache_logger_on_first_use=True,
    )


@contextmanager
def log_time(event: str, **kwargs):
    """Log `event` with the elapsed milliseconds once the block exits, raising or not."""
    log = structlog.get_logger("fishstore.timing")
    start = time.perf_counter()
    error = None
    try:
        yield
    except Exception as e:
        error = repr(e)
        raise
    finally:
        elapsed_ms = round((time.perf_counter() - start) * 1000, 1)
        log.info(event, elapsed_ms=elapsed_ms, ok=error is None, error=error, **kwargs)


class BindRequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tags every log line of a request with request_id, method and path, and
    returns the request id in the X-Request-ID header. A client-supplied
    X-Request-ID is reused.
    """

    async def dispatch(self, request, call_next):
        request_id = request.headers.get("x-request-id") or uuid4().hex
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()
        response.headers["X-Request-ID"] = request_id
        return response
