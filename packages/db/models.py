"""SQLModel table definitions for the complaint desk data layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    """Generate a random UUID string."""

    return str(uuid.uuid4())


class TicketTable(SQLModel, table=True):
    """Current state of each maintenance ticket."""

    __tablename__ = "tickets"

    id: str = Field(primary_key=True, index=True)
    ticket_number: str = Field(sa_column=Column(String(50), nullable=False, unique=True))
    title: str = Field(sa_column=Column(String(255), nullable=False))
    description: str = Field(sa_column=Column(Text, nullable=False))
    category: str = Field(sa_column=Column(String(50), nullable=False))
    priority: str = Field(sa_column=Column(String(50), nullable=False))
    status: str = Field(sa_column=Column(String(50), nullable=False, index=True))
    owner_id: str = Field(sa_column=Column(String(255), nullable=False, index=True))
    assigned_handler_id: str | None = Field(default=None, sa_column=Column(String(255), nullable=True, index=True))
    assigned_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    sla_deadline: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    sla_breached: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    resolution_hours: float | None = Field(default=None, sa_column=Column(Float, nullable=True))
    reopen_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    resolved_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    closed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    cancelled_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    reopened_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    rating_score: int | None = Field(default=None, sa_column=Column(Integer, nullable=True))
    rating_feedback: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    rated_by: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    rated_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    version: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))
    metadata_: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketTransitionTable(SQLModel, table=True):
    """Append-only status history; one row per committed transition."""

    __tablename__ = "ticket_transitions"
    __table_args__ = (UniqueConstraint("ticket_id", "sequence", name="uq_ticket_transitions_sequence"),)

    id: str = Field(primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    sequence: int = Field(sa_column=Column(Integer, nullable=False))
    from_status: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    to_status: str = Field(sa_column=Column(String(50), nullable=False))
    actor_id: str = Field(sa_column=Column(String(255), nullable=False))
    actor_role: str = Field(sa_column=Column(String(50), nullable=False))
    reason: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    metadata_: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketCommentTable(SQLModel, table=True):
    """Comments posted by residents, staff or admins."""

    __tablename__ = "ticket_comments"

    id: str = Field(primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    author_id: str = Field(sa_column=Column(String(255), nullable=False))
    author_role: str = Field(sa_column=Column(String(50), nullable=False))
    text: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketWorkUpdateTable(SQLModel, table=True):
    """Progress notes posted by the assigned handler."""

    __tablename__ = "ticket_work_updates"

    id: str = Field(primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    author_id: str = Field(sa_column=Column(String(255), nullable=False))
    description: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class AuditLogTable(SQLModel, table=True):
    """Audit copies of transition records written by the audit sink."""

    __tablename__ = "audit_logs"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    record_id: str = Field(sa_column=Column(String(36), nullable=False, unique=True))
    ticket_id: str = Field(sa_column=Column(String(36), nullable=False, index=True))
    action: str = Field(sa_column=Column(String(100), nullable=False))
    actor_id: str = Field(sa_column=Column(String(255), nullable=False))
    actor_role: str = Field(sa_column=Column(String(50), nullable=False))
    from_status: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    to_status: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    reason: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    metadata_: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class NotificationDeliveryTable(SQLModel, table=True):
    """Terminal delivery outcomes keyed by event, recipient and channel."""

    __tablename__ = "notification_deliveries"

    event_id: str = Field(sa_column=Column(String(255), primary_key=True))
    recipient_id: str = Field(sa_column=Column(String(255), primary_key=True))
    channel: str = Field(sa_column=Column(String(50), primary_key=True))
    outcome: str = Field(sa_column=Column(String(50), nullable=False))
    recorded_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class UserTable(SQLModel, table=True):
    """Accounts known to the notification audience lookup."""

    __tablename__ = "users"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    full_name: str = Field(sa_column=Column(String(255), nullable=False))
    role: str = Field(sa_column=Column(String(50), nullable=False, index=True))
    email: str | None = Field(default=None, sa_column=Column(String(255), nullable=True, unique=True))
    device_token: str | None = Field(default=None, sa_column=Column(String(512), nullable=True))
    push_enabled: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    email_enabled: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
