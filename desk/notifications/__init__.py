"""Notification fan-out for ticket events."""

from .audience import AudiencePlan, AudienceResolver, AudienceRole, Recipient, plan_audience
from .channels import (
    EmailChannel,
    EmailOutcome,
    HttpEmailChannel,
    HttpPushChannel,
    PushChannel,
    PushNotification,
    PushOutcome,
    RealtimeChannel,
    RealtimeHub,
)
from .directory import Presence, SqlUserDirectory, UserDirectory, UserProfile
from .dispatcher import (
    ChannelKind,
    DeliveryAttempt,
    DeliveryOutcome,
    DispatchReport,
    NotificationDispatcher,
)
from .ledger import DeliveryKey, DeliveryLedger, InMemoryDeliveryLedger, SqlDeliveryLedger
from .messages import NotificationContent, compose

__all__ = [
    "AudiencePlan",
    "AudienceResolver",
    "AudienceRole",
    "ChannelKind",
    "DeliveryAttempt",
    "DeliveryKey",
    "DeliveryLedger",
    "DeliveryOutcome",
    "DispatchReport",
    "EmailChannel",
    "EmailOutcome",
    "HttpEmailChannel",
    "HttpPushChannel",
    "InMemoryDeliveryLedger",
    "NotificationContent",
    "NotificationDispatcher",
    "Presence",
    "PushChannel",
    "PushNotification",
    "PushOutcome",
    "RealtimeChannel",
    "RealtimeHub",
    "Recipient",
    "SqlDeliveryLedger",
    "SqlUserDirectory",
    "UserDirectory",
    "UserProfile",
    "compose",
    "plan_audience",
]
