"""Fan committed ticket events out to every recipient over every channel.

Each (recipient, channel) pair is an independent task with its own timeout.
A failure, timeout or crash of one pair is recorded as that pair's outcome
and never reaches the other pairs or the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from opentelemetry import trace

from desk.metrics import MetricsRegistry, metrics_registry
from desk.metrics.definitions import (
    NOTIFICATION_ATTEMPTS,
    NOTIFICATION_DISPATCH_DURATION,
    NOTIFICATION_INVALID_TOKENS,
)
from desk.tickets.events import DomainEvent

from .audience import AudienceResolver, Recipient
from .channels import (
    EmailChannel,
    EmailOutcome,
    PushChannel,
    PushNotification,
    PushOutcome,
    RealtimeChannel,
)
from .directory import UserDirectory
from .ledger import DeliveryKey, DeliveryLedger, InMemoryDeliveryLedger
from .messages import NotificationContent, compose

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ChannelKind(str, Enum):
    REALTIME = "realtime"
    PUSH = "push"
    EMAIL = "email"


class DeliveryOutcome(str, Enum):
    """Outcome of one attempt as reported by the dispatcher."""

    DELIVERED = "Delivered"
    SENT = "Sent"
    INVALID_TOKEN = "InvalidToken"
    TRANSIENT_FAILURE = "TransientFailure"
    FAILED = "Failed"
    NOT_CONNECTED = "NotConnected"
    DUPLICATE = "Duplicate"


_TERMINAL = frozenset(
    {
        DeliveryOutcome.DELIVERED,
        DeliveryOutcome.SENT,
        DeliveryOutcome.INVALID_TOKEN,
        DeliveryOutcome.FAILED,
    }
)


@dataclass(frozen=True, slots=True)
class DeliveryAttempt:
    recipient_id: str
    channel: ChannelKind
    outcome: DeliveryOutcome
    transient: bool = False
    error: str | None = None

    @property
    def terminal(self) -> bool:
        return self.outcome in _TERMINAL and not self.transient


@dataclass(slots=True)
class DispatchReport:
    """Aggregated outcomes of dispatching one event."""

    event_id: str
    event_name: str
    ticket_id: str
    attempts: list[DeliveryAttempt] = field(default_factory=list)

    @property
    def recipients(self) -> list[str]:
        seen: dict[str, None] = {}
        for attempt in self.attempts:
            seen.setdefault(attempt.recipient_id, None)
        return list(seen)

    @property
    def invalid_tokens(self) -> list[str]:
        """Recipients whose device token the push gateway rejected."""

        return [
            attempt.recipient_id
            for attempt in self.attempts
            if attempt.outcome is DeliveryOutcome.INVALID_TOKEN
        ]

    @property
    def failures(self) -> list[DeliveryAttempt]:
        return [
            attempt
            for attempt in self.attempts
            if attempt.outcome
            in (DeliveryOutcome.FAILED, DeliveryOutcome.TRANSIENT_FAILURE, DeliveryOutcome.INVALID_TOKEN)
        ]

    def outcome_for(self, recipient_id: str, channel: ChannelKind | str) -> DeliveryOutcome | None:
        channel = ChannelKind(channel)
        for attempt in self.attempts:
            if attempt.recipient_id == recipient_id and attempt.channel is channel:
                return attempt.outcome
        return None


_Send = Callable[[], Awaitable[DeliveryOutcome]]


class NotificationDispatcher:
    """Resolve the audience of an event and deliver it on every usable channel.

    ``push`` and ``email`` may be ``None`` when no gateway is configured; the
    channel is then never attempted.
    """

    def __init__(
        self,
        directory: UserDirectory,
        *,
        realtime: RealtimeChannel,
        push: PushChannel | None = None,
        email: EmailChannel | None = None,
        ledger: DeliveryLedger | None = None,
        timeout: float = 5.0,
        metrics: MetricsRegistry | None = None,
        audience: AudienceResolver | None = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._realtime = realtime
        self._push = push
        self._email = email
        self._ledger = ledger or InMemoryDeliveryLedger()
        self._timeout = timeout
        self._metrics = metrics or metrics_registry
        self._audience = audience or AudienceResolver(directory)

    async def handle(self, event: DomainEvent) -> None:
        """Event bus entry point."""

        await self.dispatch(event)

    async def dispatch(self, event: DomainEvent) -> DispatchReport:
        report = DispatchReport(event_id=event.event_id, event_name=event.name, ticket_id=event.ticket_id)
        with tracer.start_as_current_span("notification.dispatch") as span, self._metrics.time_distribution(
            NOTIFICATION_DISPATCH_DURATION, labels={"event": event.name}
        ):
            span.set_attribute("event.id", event.event_id)
            span.set_attribute("event.name", event.name)
            span.set_attribute("ticket.id", event.ticket_id)
            try:
                recipients = await self._audience.resolve(event)
            except Exception:
                logger.exception(
                    "Audience resolution failed for %s on ticket %s", event.event_id, event.ticket_id
                )
                return report

            jobs: list[tuple[str, ChannelKind, _Send]] = []
            for recipient in recipients:
                content = compose(event, recipient)
                jobs.extend(self._jobs_for(recipient, content))
            span.set_attribute("notification.recipients", len(recipients))
            span.set_attribute("notification.attempts", len(jobs))

            results = await asyncio.gather(
                *(self._attempt(event, recipient_id, channel, send) for recipient_id, channel, send in jobs),
                return_exceptions=True,
            )
            for (recipient_id, channel, _), result in zip(jobs, results):
                if isinstance(result, BaseException):
                    logger.error(
                        "Delivery task crashed for %s to %s via %s",
                        event.event_id,
                        recipient_id,
                        channel.value,
                        exc_info=result,
                    )
                    result = DeliveryAttempt(
                        recipient_id, channel, DeliveryOutcome.TRANSIENT_FAILURE, transient=True, error=repr(result)
                    )
                report.attempts.append(result)

        logger.info(
            "Dispatched %s for ticket %s: %d attempts, %d failures",
            event.name,
            event.ticket_id,
            len(report.attempts),
            len(report.failures),
        )
        return report

    def _jobs_for(
        self, recipient: Recipient, content: NotificationContent
    ) -> list[tuple[str, ChannelKind, _Send]]:
        profile = recipient.profile
        user_id = profile.user_id
        jobs: list[tuple[str, ChannelKind, _Send]] = []

        if profile.has_active_session:
            payload = {**content.data, "message": content.message}

            async def send_realtime() -> DeliveryOutcome:
                emitted = await self._realtime.emit(user_id, content.realtime_event, payload)
                return DeliveryOutcome.DELIVERED if emitted else DeliveryOutcome.NOT_CONNECTED

            jobs.append((user_id, ChannelKind.REALTIME, send_realtime))

        if self._push is not None and profile.can_receive_push:
            push = self._push
            token = profile.device_token
            notification = PushNotification(title=content.push_title, body=content.push_body)

            async def send_push() -> DeliveryOutcome:
                outcome = PushOutcome(await push.send(token, notification, content.push_data()))
                return DeliveryOutcome(outcome.value)

            jobs.append((user_id, ChannelKind.PUSH, send_push))

        if self._email is not None and profile.can_receive_email:
            email = self._email
            address = profile.email
            variables = content.email_variables(recipient)

            async def send_email() -> DeliveryOutcome:
                outcome = EmailOutcome(await email.send(address, content.email_template, variables))
                return DeliveryOutcome(outcome.value)

            jobs.append((user_id, ChannelKind.EMAIL, send_email))

        return jobs

    async def _attempt(
        self, event: DomainEvent, recipient_id: str, channel: ChannelKind, send: _Send
    ) -> DeliveryAttempt:
        key = DeliveryKey(event.delivery_id, recipient_id, channel.value)
        try:
            claimed = await self._ledger.claim(key)
        except Exception:
            logger.exception("Delivery ledger unavailable for %s; sending anyway", key)
            claimed = True
        if not claimed:
            logger.debug("Skipping %s: already delivered", key)
            return DeliveryAttempt(recipient_id, channel, DeliveryOutcome.DUPLICATE)

        # The claim is held until an outcome is recorded; anything else, including
        # cancellation, hands it back so a later dispatch can retry.
        recorded = False
        try:
            attempt = await self._send(event, recipient_id, channel, send)
            self._metrics.counter(NOTIFICATION_ATTEMPTS).inc(
                labels={"channel": channel.value, "outcome": attempt.outcome.value}
            )
            if attempt.outcome is DeliveryOutcome.INVALID_TOKEN:
                self._metrics.counter(NOTIFICATION_INVALID_TOKENS).inc()
                logger.warning(
                    "Push token of user %s rejected as invalid (event %s, ticket %s)",
                    recipient_id,
                    event.event_id,
                    event.ticket_id,
                )
            if attempt.terminal:
                try:
                    await self._ledger.record(key, attempt.outcome.value)
                    recorded = True
                except Exception:
                    logger.exception("Could not record delivery outcome for %s", key)
            return attempt
        finally:
            if not recorded:
                await self._release(key)

    async def _release(self, key: DeliveryKey) -> None:
        try:
            await self._ledger.release(key)
        except Exception:
            logger.exception("Could not release delivery claim for %s", key)

    async def _send(
        self, event: DomainEvent, recipient_id: str, channel: ChannelKind, send: _Send
    ) -> DeliveryAttempt:
        # Timeouts and errors count as push TransientFailure / email Failed, never terminal.
        failed = DeliveryOutcome.FAILED if channel is ChannelKind.EMAIL else DeliveryOutcome.TRANSIENT_FAILURE
        try:
            outcome = await asyncio.wait_for(send(), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "%s delivery of %s to %s timed out after %.1fs",
                channel.value,
                event.event_id,
                recipient_id,
                self._timeout,
            )
            return DeliveryAttempt(recipient_id, channel, failed, transient=True, error="timeout")
        except Exception as exc:
            logger.exception(
                "%s delivery of %s to %s failed (ticket %s)",
                channel.value,
                event.event_id,
                recipient_id,
                event.ticket_id,
            )
            return DeliveryAttempt(recipient_id, channel, failed, transient=True, error=repr(exc))
        return DeliveryAttempt(
            recipient_id,
            channel,
            outcome,
            transient=outcome in (DeliveryOutcome.TRANSIENT_FAILURE, DeliveryOutcome.NOT_CONNECTED),
        )
