from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from desk.dependencies.auth import CurrentUser
from desk.dependencies.tickets import AdminUser, ResidentUser, TicketServiceDep
from desk.tickets.aggregate import COMMENT_MAX_LENGTH
from desk.tickets.errors import TransitionError
from desk.tickets.models import (
    RATING_MAX,
    RATING_MIN,
    TicketComment,
    TicketRating,
    TicketSnapshot,
    TransitionRecord,
    WorkUpdate,
)
from desk.tickets.state import ActorRole, TicketCategory, TicketPriority, TicketStatus
from desk.tickets.validator import DenialKind

router = APIRouter(prefix="/tickets", tags=["tickets"])

_STATUS_BY_KIND: dict[DenialKind, int] = {
    DenialKind.TICKET_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    DenialKind.NOT_OWN_COMPLAINT: status.HTTP_403_FORBIDDEN,
    DenialKind.NOT_ASSIGNED_TO_ACTOR: status.HTTP_403_FORBIDDEN,
    DenialKind.FORBIDDEN_FOR_ROLE: status.HTTP_403_FORBIDDEN,
    DenialKind.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    DenialKind.SKIP_STATE_NOT_ALLOWED: status.HTTP_409_CONFLICT,
    DenialKind.REOPEN_WINDOW_EXPIRED: status.HTTP_409_CONFLICT,
    DenialKind.REASON_REQUIRED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    DenialKind.HANDLER_UNAVAILABLE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    DenialKind.RATING_NOT_ALLOWED: status.HTTP_409_CONFLICT,
    DenialKind.PERSISTENCE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _to_http(exc: TransitionError) -> HTTPException:
    return HTTPException(
        status_code=_STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST),
        detail={"kind": exc.kind.value, "message": exc.message},
    )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _audit_meta(request: Request) -> dict[str, Any]:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


class TransitionRecordModel(BaseModel):
    id: str
    sequence: int
    from_status: TicketStatus | None = None
    to_status: TicketStatus
    actor_id: str
    actor_role: ActorRole
    reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str

    @classmethod
    def from_entity(cls, entity: TransitionRecord) -> "TransitionRecordModel":
        return cls(
            id=entity.id,
            sequence=entity.sequence,
            from_status=entity.from_status,
            to_status=entity.to_status,
            actor_id=entity.actor_id,
            actor_role=entity.actor_role,
            reason=entity.reason,
            metadata=dict(entity.metadata),
            created_at=entity.created_at.isoformat(),
        )


class RatingModel(BaseModel):
    score: int
    feedback: str | None = None
    rated_by: str
    rated_at: str

    @classmethod
    def from_entity(cls, entity: TicketRating) -> "RatingModel":
        return cls(
            score=entity.score,
            feedback=entity.feedback,
            rated_by=entity.rated_by,
            rated_at=entity.rated_at.isoformat(),
        )


class TicketModel(BaseModel):
    id: str
    ticket_number: str
    title: str
    description: str
    category: TicketCategory
    priority: TicketPriority
    status: TicketStatus
    owner_id: str
    assigned_handler_id: str | None = None
    assigned_at: str | None = None
    sla_deadline: str
    sla_breached: bool
    is_overdue: bool = False
    sla_hours_remaining: float | None = None
    resolution_hours: float | None = None
    reopen_count: int
    resolved_at: str | None = None
    closed_at: str | None = None
    cancelled_at: str | None = None
    reopened_at: str | None = None
    version: int
    rating: RatingModel | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str
    updated_at: str

    @classmethod
    def _fields_from(cls, snapshot: TicketSnapshot, now: datetime | None = None) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        return {
            "id": snapshot.id,
            "ticket_number": snapshot.ticket_number,
            "title": snapshot.title,
            "description": snapshot.description,
            "category": snapshot.category,
            "priority": snapshot.priority,
            "status": snapshot.status,
            "owner_id": snapshot.owner_id,
            "assigned_handler_id": snapshot.assigned_handler_id,
            "assigned_at": _iso(snapshot.assigned_at),
            "sla_deadline": snapshot.sla_deadline.isoformat(),
            "sla_breached": snapshot.sla_breached,
            "is_overdue": snapshot.is_overdue(now),
            "sla_hours_remaining": snapshot.sla_hours_remaining(now),
            "resolution_hours": snapshot.resolution_hours,
            "reopen_count": snapshot.reopen_count,
            "resolved_at": _iso(snapshot.resolved_at),
            "closed_at": _iso(snapshot.closed_at),
            "cancelled_at": _iso(snapshot.cancelled_at),
            "reopened_at": _iso(snapshot.reopened_at),
            "version": snapshot.version,
            "rating": RatingModel.from_entity(snapshot.rating) if snapshot.rating else None,
            "metadata": dict(snapshot.metadata),
            "created_at": snapshot.created_at.isoformat(),
            "updated_at": snapshot.updated_at.isoformat(),
        }

    @classmethod
    def from_snapshot(cls, snapshot: TicketSnapshot) -> "TicketModel":
        return cls(**cls._fields_from(snapshot))


class TicketDetailModel(TicketModel):
    history: list[TransitionRecordModel]

    @classmethod
    def from_snapshot(cls, snapshot: TicketSnapshot) -> "TicketDetailModel":
        return cls(
            **cls._fields_from(snapshot),
            history=[TransitionRecordModel.from_entity(record) for record in snapshot.history],
        )


class CommentModel(BaseModel):
    id: str
    ticket_id: str
    author_id: str
    author_role: ActorRole
    text: str
    created_at: str

    @classmethod
    def from_entity(cls, entity: TicketComment) -> "CommentModel":
        return cls(
            id=entity.id,
            ticket_id=entity.ticket_id,
            author_id=entity.author_id,
            author_role=entity.author_role,
            text=entity.text,
            created_at=entity.created_at.isoformat(),
        )


class WorkUpdateModel(BaseModel):
    id: str
    ticket_id: str
    author_id: str
    description: str
    created_at: str

    @classmethod
    def from_entity(cls, entity: WorkUpdate) -> "WorkUpdateModel":
        return cls(
            id=entity.id,
            ticket_id=entity.ticket_id,
            author_id=entity.author_id,
            description=entity.description,
            created_at=entity.created_at.isoformat(),
        )


class AllowedTransitionsModel(BaseModel):
    ticket_id: str
    current_status: TicketStatus
    allowed: list[TicketStatus]


class TicketCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    priority: TicketPriority = TicketPriority.MEDIUM
    category: TicketCategory = TicketCategory.OTHER
    metadata: dict[str, Any] = Field(default_factory=dict)


class TransitionRequest(BaseModel):
    status: TicketStatus
    reason: str | None = None
    handler_id: str | None = None


class AssignmentRequest(BaseModel):
    handler_id: str = Field(min_length=1)
    reason: str | None = None


class CommentCreateRequest(BaseModel):
    text: str = Field(min_length=1, max_length=COMMENT_MAX_LENGTH)


class WorkUpdateCreateRequest(BaseModel):
    description: str = Field(min_length=1)


class RatingRequest(BaseModel):
    score: int = Field(ge=RATING_MIN, le=RATING_MAX)
    feedback: str | None = Field(default=None, max_length=COMMENT_MAX_LENGTH)


@router.get("", response_model=list[TicketModel], summary="List tickets visible to the caller")
async def list_tickets(
    service: TicketServiceDep,
    user: CurrentUser,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
) -> list[TicketModel]:
    try:
        tickets = await service.list_tickets(
            actor_id=user.user_id, actor_role=user.role, status=status_filter
        )
    except TransitionError as exc:
        raise _to_http(exc) from exc
    return [TicketModel.from_snapshot(item) for item in tickets]


@router.post("", response_model=TicketDetailModel, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    user: ResidentUser,
) -> TicketDetailModel:
    try:
        snapshot = await service.create_ticket(
            owner_id=user.user_id,
            title=payload.title,
            description=payload.description,
            priority=payload.priority,
            category=payload.category,
            metadata=payload.metadata,
        )
    except TransitionError as exc:
        raise _to_http(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return TicketDetailModel.from_snapshot(snapshot)


@router.get("/{ticket_id}", response_model=TicketDetailModel)
async def get_ticket(ticket_id: str, service: TicketServiceDep, user: CurrentUser) -> TicketDetailModel:
    try:
        snapshot = await service.get_ticket(ticket_id, actor_id=user.user_id, actor_role=user.role)
    except TransitionError as exc:
        raise _to_http(exc) from exc
    return TicketDetailModel.from_snapshot(snapshot)


@router.post("/{ticket_id}/transitions", response_model=TicketDetailModel)
async def request_transition(
    ticket_id: str,
    payload: TransitionRequest,
    request: Request,
    service: TicketServiceDep,
    user: CurrentUser,
) -> TicketDetailModel:
    try:
        snapshot = await service.request_transition(
            ticket_id,
            payload.status,
            user.user_id,
            user.role,
            payload.reason,
            handler_id=payload.handler_id,
            audit_meta=_audit_meta(request),
        )
    except TransitionError as exc:
        raise _to_http(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return TicketDetailModel.from_snapshot(snapshot)


@router.post("/{ticket_id}/assignment", response_model=TicketDetailModel)
async def assign_ticket(
    ticket_id: str,
    payload: AssignmentRequest,
    service: TicketServiceDep,
    user: AdminUser,
) -> TicketDetailModel:
    try:
        snapshot = await service.assign_handler(
            ticket_id, payload.handler_id, user.user_id, user.role, payload.reason
        )
    except TransitionError as exc:
        raise _to_http(exc) from exc
    return TicketDetailModel.from_snapshot(snapshot)


@router.get("/{ticket_id}/allowed-transitions", response_model=AllowedTransitionsModel)
async def allowed_transitions(
    ticket_id: str, service: TicketServiceDep, user: CurrentUser
) -> AllowedTransitionsModel:
    try:
        snapshot = await service.get_ticket(ticket_id, actor_id=user.user_id, actor_role=user.role)
        allowed = await service.allowed_transitions(ticket_id, actor_id=user.user_id, actor_role=user.role)
    except TransitionError as exc:
        raise _to_http(exc) from exc
    return AllowedTransitionsModel(ticket_id=ticket_id, current_status=snapshot.status, allowed=allowed)


@router.get("/{ticket_id}/comments", response_model=list[CommentModel])
async def list_comments(ticket_id: str, service: TicketServiceDep, user: CurrentUser) -> list[CommentModel]:
    try:
        await service.get_ticket(ticket_id, actor_id=user.user_id, actor_role=user.role)
        comments = await service.list_comments(ticket_id)
    except TransitionError as exc:
        raise _to_http(exc) from exc
    return [CommentModel.from_entity(item) for item in comments]


@router.post("/{ticket_id}/comments", response_model=CommentModel, status_code=status.HTTP_201_CREATED)
async def add_comment(
    ticket_id: str,
    payload: CommentCreateRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> CommentModel:
    try:
        comment = await service.add_comment(
            ticket_id, author_id=user.user_id, author_role=user.role, text=payload.text
        )
    except TransitionError as exc:
        raise _to_http(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return CommentModel.from_entity(comment)


@router.get("/{ticket_id}/work-updates", response_model=list[WorkUpdateModel])
async def list_work_updates(
    ticket_id: str, service: TicketServiceDep, user: CurrentUser
) -> list[WorkUpdateModel]:
    try:
        await service.get_ticket(ticket_id, actor_id=user.user_id, actor_role=user.role)
        updates = await service.list_work_updates(ticket_id)
    except TransitionError as exc:
        raise _to_http(exc) from exc
    return [WorkUpdateModel.from_entity(item) for item in updates]


@router.post(
    "/{ticket_id}/work-updates", response_model=WorkUpdateModel, status_code=status.HTTP_201_CREATED
)
async def add_work_update(
    ticket_id: str,
    payload: WorkUpdateCreateRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> WorkUpdateModel:
    try:
        update = await service.add_work_update(
            ticket_id, actor_id=user.user_id, actor_role=user.role, description=payload.description
        )
    except TransitionError as exc:
        raise _to_http(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return WorkUpdateModel.from_entity(update)


@router.post("/{ticket_id}/rating", response_model=TicketDetailModel)
async def rate_ticket(
    ticket_id: str,
    payload: RatingRequest,
    service: TicketServiceDep,
    user: ResidentUser,
) -> TicketDetailModel:
    try:
        snapshot = await service.rate_ticket(
            ticket_id,
            actor_id=user.user_id,
            actor_role=user.role,
            score=payload.score,
            feedback=payload.feedback,
        )
    except TransitionError as exc:
        raise _to_http(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return TicketDetailModel.from_snapshot(snapshot)
