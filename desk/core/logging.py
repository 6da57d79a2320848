"""Logging and tracing setup for the complaint desk service."""

from __future__ import annotations

import logging
from logging.config import dictConfig

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from desk.core.config import Settings

_active_provider: TracerProvider | None = None


def _parse_headers(header_string: str | None) -> dict[str, str]:
    headers: dict[str, str] = {}
    for item in (header_string or "").split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def configure_logging(settings: Settings) -> logging.Logger:
    """Configure root, audit and client loggers from settings."""

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": settings.log_format},
                "audit": {"format": "%(asctime)s AUDIT %(message)s"},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level,
                },
                "audit": {
                    "class": "logging.StreamHandler",
                    "formatter": "audit",
                    "level": logging.INFO,
                },
            },
            "loggers": {
                "desk.audit": {"handlers": ["audit"], "level": logging.INFO, "propagate": False},
                # Request lines from the channel gateways are too chatty at INFO.
                "httpx": {"level": logging.WARNING},
            },
            "root": {
                "handlers": ["default"],
                "level": level,
            },
        }
    )

    logger = logging.getLogger(settings.app_name)
    logger.setLevel(level)
    return logger


def _span_exporter(settings: Settings) -> OTLPSpanExporter:
    options: dict[str, object] = {}
    if settings.otel_exporter_otlp_endpoint:
        options["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = _parse_headers(settings.otel_exporter_otlp_headers)
    if headers:
        options["headers"] = headers
    return OTLPSpanExporter(**options)


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install an OTLP exporting tracer provider when tracing is enabled.

    Returns ``None`` when tracing is disabled or a provider is already active.
    """

    global _active_provider

    if _active_provider is not None or not settings.otel_enabled:
        return None

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "deployment.environment": settings.environment,
            }
        )
    )
    provider.add_span_processor(BatchSpanProcessor(_span_exporter(settings)))
    trace.set_tracer_provider(provider)
    _active_provider = provider
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    global _active_provider

    if provider is None:
        return
    provider.shutdown()
    if provider is _active_provider:
        _active_provider = None
