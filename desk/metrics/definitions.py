"""Metrics emitted by the ticket lifecycle and the notification dispatcher."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

TICKET_TRANSITIONS = "ticket_transitions_total"
TICKET_TRANSITION_DENIALS = "ticket_transition_denials_total"
TICKET_SLA_BREACHES = "ticket_sla_breaches_total"
AUDIT_SINK_FAILURES = "audit_sink_failures_total"
NOTIFICATION_ATTEMPTS = "notification_attempts_total"
NOTIFICATION_INVALID_TOKENS = "notification_invalid_tokens_total"
NOTIFICATION_DISPATCH_DURATION = "notification_dispatch_duration_seconds"


@dataclass(frozen=True)
class MetricDefinition:
    """Describe a metric that should exist in the registry."""

    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=TICKET_TRANSITIONS,
        metric_type="counter",
        description="Committed ticket status transitions by target status.",
        label_names=("to_status",),
    ),
    MetricDefinition(
        name=TICKET_TRANSITION_DENIALS,
        metric_type="counter",
        description="Refused ticket operations by denial kind.",
        label_names=("kind",),
    ),
    MetricDefinition(
        name=TICKET_SLA_BREACHES,
        metric_type="counter",
        description="Tickets resolved after their SLA deadline.",
        label_names=("priority",),
    ),
    MetricDefinition(
        name=AUDIT_SINK_FAILURES,
        metric_type="counter",
        description="Transition records the audit sink failed to store.",
    ),
    MetricDefinition(
        name=NOTIFICATION_ATTEMPTS,
        metric_type="counter",
        description="Channel delivery attempts by channel and outcome.",
        label_names=("channel", "outcome"),
    ),
    MetricDefinition(
        name=NOTIFICATION_INVALID_TOKENS,
        metric_type="counter",
        description="Push deliveries rejected because the device token is invalid.",
    ),
    MetricDefinition(
        name=NOTIFICATION_DISPATCH_DURATION,
        metric_type="distribution",
        description="Time spent fanning one event out to its audience.",
        label_names=("event",),
    ),
)
