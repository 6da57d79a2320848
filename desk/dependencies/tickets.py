from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from desk.dependencies.auth import User, role_required
from desk.tickets.service import TicketService
from desk.tickets.state import ActorRole

require_resident = role_required(ActorRole.RESIDENT)
require_admin = role_required(ActorRole.ADMIN)

ResidentUser = Annotated[User, Depends(require_resident)]
AdminUser = Annotated[User, Depends(require_admin)]


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
