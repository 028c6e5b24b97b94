"""Logging and tracing setup for the HelpDesk API.

Application loggers live under ``helpdesk``. The ticket domain
(``helpdesk.tickets``) can be tuned separately through
``HELPDESK_TICKET_LOG_LEVEL`` so version conflicts and sweeper runs can be
surfaced without turning up every other logger.
"""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from helpdesk.core.config import Settings

APP_LOGGER = "helpdesk"
TICKET_LOGGER = "helpdesk.tickets"

_active_provider: TracerProvider | None = None


def _level(name: str | None, default: int) -> int:
    value = getattr(logging, (name or "").upper(), None)
    return value if isinstance(value, int) else default


def _logging_config(settings: Settings) -> dict[str, Any]:
    level = _level(settings.log_level, logging.INFO)
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"helpdesk": {"format": settings.log_format}},
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "helpdesk", "level": logging.NOTSET},
        },
        "loggers": {
            APP_LOGGER: {"level": level},
            TICKET_LOGGER: {"level": _level(settings.ticket_log_level, level)},
        },
        "root": {"handlers": ["console"], "level": level},
    }


def configure_logging(settings: Settings) -> logging.Logger:
    """Install the console handler and return the ``helpdesk`` logger."""

    dictConfig(_logging_config(settings))
    return logging.getLogger(APP_LOGGER)


def _otlp_headers(raw: str | None) -> dict[str, str]:
    """Parse ``key=value,key=value`` exporter headers, dropping malformed pairs."""

    pairs = (item.partition("=") for item in (raw or "").split(","))
    return {key.strip(): value.strip() for key, sep, value in pairs if sep and key.strip()}


def _build_exporter(settings: Settings) -> OTLPSpanExporter:
    options: dict[str, Any] = {}
    if settings.otel_exporter_otlp_endpoint:
        options["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = _otlp_headers(settings.otel_exporter_otlp_headers)
    if headers:
        options["headers"] = headers
    return OTLPSpanExporter(**options)


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install an OTLP tracer provider when tracing is enabled.

    Returns ``None`` when tracing is off or a provider is already installed,
    so only the first lifespan in a process owns the shutdown.
    """

    global _active_provider

    if _active_provider is not None or not settings.otel_enabled:
        return None

    resource = Resource.create(
        {
            "service.name": settings.otel_service_name,
            "deployment.environment": settings.environment,
        }
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(_build_exporter(settings)))
    trace.set_tracer_provider(provider)
    _active_provider = provider
    logging.getLogger(APP_LOGGER).info("Tracing enabled for %s", settings.otel_service_name)
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    """Flush and shut down ``provider`` if this process installed it."""

    global _active_provider

    if provider is None:
        return
    provider.shutdown()
    if provider is _active_provider:
        _active_provider = None
