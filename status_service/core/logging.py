"""Logging and tracing setup for the status service."""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from status_service.core.config import Settings

APP_LOGGER = "status_service"
# third-party loggers that are noisy at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")

_TRACER_INITIALISED = False


def _parse_headers(header_string: str | None) -> dict[str, str]:
    """Parse ``key=value`` pairs in the OTEL_EXPORTER_OTLP_HEADERS format."""

    headers: dict[str, str] = {}
    for item in (header_string or "").split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def _logging_config(settings: Settings, level: int) -> dict[str, Any]:
    quiet_level = max(level, logging.WARNING)
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": settings.log_format}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "level": level,
            }
        },
        "root": {"handlers": ["console"], "level": level},
        "loggers": {name: {"level": quiet_level} for name in _QUIET_LOGGERS},
    }


def configure_logging(settings: Settings) -> logging.Logger:
    """Install the console handler and return the service logger."""

    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    dictConfig(_logging_config(settings, level))

    logger = logging.getLogger(APP_LOGGER)
    logger.setLevel(level)
    logger.debug("Logging configured for %s (%s)", settings.app_name, settings.environment)
    return logger


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install an OTLP tracer provider when tracing is enabled.

    Returns ``None`` when tracing is disabled or a provider is already
    installed, so callers can pass the result straight to
    :func:`shutdown_tracer`.
    """

    global _TRACER_INITIALISED

    if _TRACER_INITIALISED or not settings.otel_enabled:
        return None

    exporter = OTLPSpanExporter(
        endpoint=settings.otel_exporter_otlp_endpoint,
        headers=_parse_headers(settings.otel_exporter_otlp_headers) or None,
    )
    provider = TracerProvider(
        resource=Resource.create(
            {"service.name": settings.otel_service_name, "deployment.environment": settings.environment}
        )
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    _TRACER_INITIALISED = True
    logging.getLogger(APP_LOGGER).info("OpenTelemetry tracing enabled for %s", settings.otel_service_name)
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    """Flush pending spans and release the provider."""

    global _TRACER_INITIALISED

    if provider is None:
        return
    provider.force_flush()
    provider.shutdown()
    _TRACER_INITIALISED = False
