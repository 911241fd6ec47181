"""
Ticket Controllers (API Routes)
================================

FastAPI routes for ticket workflow and SLA status.

Controllers are thin - they delegate to application services.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from automation.application import ITaskCreator
from infrastructure.database import get_session
from sla.application.dto import (
    FirstResponseDTO,
    SLAProfileAssignDTO,
    TicketCreateDTO,
    TicketOperationResponse,
    TicketSLAResponse,
    TicketUpdateDTO,
)
from sla.infrastructure import SQLAlchemyStorage, SQLAlchemyTaskCreator
from sla.services import Runtime, Services, build_services
from shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/tickets", tags=["Tickets"])


# ========== Example payloads for Swagger ==========

TICKET_CREATE_EXAMPLE = {
    "subject": "VPN drops every few minutes",
    "description": "Remote staff lose the VPN tunnel roughly every 5 minutes.",
    "priority": "high",
    "organization_id": "3f0c1a52-8d4e-4c1e-9a55-0f9b8e2d7a10",
    "tags": ["network"]
}

TICKET_SLA_RESPONSE_EXAMPLE = {
    "ticket_id": "123e4567-e89b-12d3-a456-426614174000",
    "ticket_number": 1042,
    "priority": "high",
    "status": "open",
    "sla_profile_id": "6a1f7f7e-3d39-4b7b-8a43-7d2f0d0b1c11",
    "created_at": "2024-01-15T10:00:00Z",
    "response_sla": {
        "sla_type": "response",
        "deadline": "2024-01-15T12:00:00Z",
        "remaining_seconds": 3600,
        "percentage_remaining": 50.0,
        "state": "on_track",
        "met": None,
        "met_at": None
    },
    "resolution_sla": {
        "sla_type": "resolution",
        "deadline": "2024-01-15T22:00:00Z",
        "remaining_seconds": 39600,
        "percentage_remaining": 91.7,
        "state": "on_track",
        "met": None,
        "met_at": None
    },
    "overall_state": "on_track",
    "next_deadline": "2024-01-15T12:00:00Z"
}


# ========== Dependencies ==========

def get_runtime(request: Request) -> Runtime:
    """Process-wide collaborators created at startup."""
    return request.app.state.runtime


async def get_storage(session: AsyncSession = Depends(get_session)) -> SQLAlchemyStorage:
    return SQLAlchemyStorage(session)


async def get_task_creator(session: AsyncSession = Depends(get_session)) -> ITaskCreator:
    return SQLAlchemyTaskCreator(session)


async def get_services(
    runtime: Runtime = Depends(get_runtime),
    storage=Depends(get_storage),
    task_creator: ITaskCreator = Depends(get_task_creator),
) -> Services:
    """Services bound to the request's session."""
    return build_services(runtime, storage, task_creator)


# ========== Routes ==========

@router.post(
    "",
    response_model=TicketOperationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a ticket",
    responses={422: {"description": "Invalid payload or unknown SLA profile setup"}},
    openapi_extra={"requestBody": {"content": {"application/json": {"example": TICKET_CREATE_EXAMPLE}}}},
)
async def create_ticket(
    payload: TicketCreateDTO,
    services: Services = Depends(get_services),
) -> TicketOperationResponse:
    """
    Create a ticket.

    Resolves the SLA profile (explicit, organization contract, default),
    computes response/resolution deadlines and runs ticket_created rules.
    """
    result = await services.workflow.create_ticket(payload.to_command())
    return TicketOperationResponse.from_result(result)


@router.patch(
    "/{ticket_id}",
    response_model=TicketOperationResponse,
    summary="Update a ticket",
    responses={
        404: {"description": "Ticket not found"},
        409: {"description": "Concurrent modification, retries exhausted"},
        422: {"description": "Invalid status transition"},
    },
)
async def update_ticket(
    ticket_id: str,
    payload: TicketUpdateDTO,
    services: Services = Depends(get_services),
) -> TicketOperationResponse:
    result = await services.workflow.update_ticket(
        ticket_id, payload.to_command(), actor_id=payload.actor_id
    )
    return TicketOperationResponse.from_result(result)


@router.post(
    "/{ticket_id}/first-response",
    response_model=TicketOperationResponse,
    summary="Record the first response",
    responses={404: {"description": "Ticket not found"}},
)
async def mark_first_response(
    ticket_id: str,
    payload: Optional[FirstResponseDTO] = None,
    services: Services = Depends(get_services),
) -> TicketOperationResponse:
    """Stamps first_response_at once; repeated calls leave the ticket unchanged."""
    result = await services.workflow.mark_first_response(
        ticket_id, actor_id=payload.actor_id if payload else None
    )
    return TicketOperationResponse.from_result(result)


@router.put(
    "/{ticket_id}/sla-profile",
    response_model=TicketOperationResponse,
    summary="Reassign the SLA profile",
    responses={404: {"description": "Ticket or profile not found"}},
)
async def reassign_profile(
    ticket_id: str,
    payload: SLAProfileAssignDTO,
    services: Services = Depends(get_services),
) -> TicketOperationResponse:
    """Recomputes both deadlines from creation time and resets the met flags."""
    result = await services.workflow.reassign_profile(
        ticket_id, payload.sla_profile_id, actor_id=payload.actor_id
    )
    return TicketOperationResponse.from_result(result)


@router.get(
    "/{ticket_id}/sla",
    response_model=TicketSLAResponse,
    summary="Get SLA status",
    responses={
        200: {"content": {"application/json": {"example": TICKET_SLA_RESPONSE_EXAMPLE}}},
        404: {"description": "Ticket not found"},
    },
)
async def get_ticket_sla(
    ticket_id: str,
    services: Services = Depends(get_services),
) -> TicketSLAResponse:
    view = await services.workflow.get_ticket_sla(ticket_id)
    return TicketSLAResponse.from_view(view)
