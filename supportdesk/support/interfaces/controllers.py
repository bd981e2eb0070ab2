"""
Support Controllers (API Routes)
================================

FastAPI routes for tickets, messages, escalation, assignment, surveys,
tenant configuration and the agent directory.

Controllers are thin - they delegate to application services held on
app.state and let the exception handlers map domain errors.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, WebSocket, status

from supportdesk.config import (
    BusinessModel,
    TicketCategory,
    TicketPriority,
    TicketStatus,
)
from supportdesk.core import Actor
from supportdesk.shared.api import get_actor, require_scope, require_staff, stream_channel
from supportdesk.shared.infrastructure.logging import get_logger
from supportdesk.support.application import (
    SUPPORT_CHANNEL,
    AgentDirectoryService,
    AgentProfileDTO,
    AgentProfileResponse,
    AssignTicketDTO,
    EscalateTicketDTO,
    MessageCreateDTO,
    MessageResponse,
    Pagination,
    SatisfactionDTO,
    SatisfactionResponse,
    SupportConfigResponse,
    SupportConfigUpdate,
    TicketCreateDTO,
    TicketFilters,
    TicketListResponse,
    TicketResponse,
    TicketService,
    TicketSort,
    TicketUpdateDTO,
    UserStatsResponse,
    user_channel,
)
from supportdesk.support.application.dto import SortField, SortOrder

logger = get_logger(__name__)
router = APIRouter(prefix="/support", tags=["Support"])


# ========== Dependencies ==========

def get_ticket_service(request: Request) -> TicketService:
    return request.app.state.ticket_service


def get_agent_service(request: Request) -> AgentDirectoryService:
    return request.app.state.agent_service


def _config_scope(
    actor: Actor,
    business_model: Optional[BusinessModel],
    tenant_id: Optional[str]
):
    """Platform roles may address any scope; everyone else gets their own."""
    if actor.is_platform and business_model is not None:
        return business_model, tenant_id
    return require_scope(actor), actor.tenant_id


# ========== Tickets ==========

@router.post(
    "/tickets",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a support ticket",
    description="""
    Create a ticket in the caller's (business model, tenant) scope.

    The ticket, its SLA record and attachment references are written in one
    transaction. With auto-assignment enabled the least-loaded matching agent
    is assigned immediately.

    **Errors**: 429 when the hourly or daily creation quota is reached,
    500 when the scope has no support configuration.
    """
)
async def create_ticket(
    payload: TicketCreateDTO,
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service)
):
    business_model = require_scope(actor)
    ticket = await service.create_ticket(actor, payload, business_model, actor.tenant_id)
    return TicketResponse.from_model(ticket)


@router.get(
    "/tickets",
    response_model=TicketListResponse,
    summary="List visible tickets"
)
async def list_tickets(
    status_filter: Optional[List[TicketStatus]] = Query(None, alias="status"),
    priority: Optional[List[TicketPriority]] = Query(None),
    category: Optional[List[TicketCategory]] = Query(None),
    assigned_to: Optional[str] = Query(None),
    business_model: Optional[BusinessModel] = Query(None),
    tenant_id: Optional[str] = Query(None),
    created_from: Optional[datetime] = Query(None),
    created_to: Optional[datetime] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    sort_by: SortField = Query("created_at"),
    sort_order: SortOrder = Query("desc"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service)
):
    filters = TicketFilters(
        status=status_filter,
        priority=priority,
        category=category,
        assigned_to=assigned_to,
        business_model=business_model,
        tenant_id=tenant_id,
        created_from=created_from,
        created_to=created_to,
        search=search,
    )
    tickets, pagination = await service.list_tickets(
        actor, filters, TicketSort(field=sort_by, order=sort_order), Pagination(page=page, limit=limit)
    )
    return TicketListResponse(
        tickets=[TicketResponse.from_model(t) for t in tickets],
        pagination=pagination,
    )


@router.get(
    "/tickets/search",
    response_model=List[TicketResponse],
    summary="Search visible tickets by number, subject or description"
)
async def search_tickets(
    q: str = Query(..., min_length=1, max_length=200),
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service)
):
    tickets = await service.search_tickets(actor, q)
    return [TicketResponse.from_model(t) for t in tickets]


@router.get("/stats", response_model=UserStatsResponse, summary="Ticket statistics of the caller")
async def get_user_stats(
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service)
):
    return UserStatsResponse(**await service.get_user_stats(actor))


@router.get("/tickets/{ticket_id}", response_model=TicketResponse, summary="Get a ticket")
async def get_ticket(
    ticket_id: str,
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service)
):
    return TicketResponse.from_model(await service.get_ticket(ticket_id, actor))


@router.patch(
    "/tickets/{ticket_id}",
    response_model=TicketResponse,
    summary="Update a ticket",
    description="""
    Partial update. Status changes follow the transition table; an illegal
    move returns 409 and leaves the ticket untouched. Priority changes
    recompute both SLA due times from the original creation time.
    """
)
async def update_ticket(
    ticket_id: str,
    patch: TicketUpdateDTO,
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service)
):
    return TicketResponse.from_model(await service.update_ticket(ticket_id, patch, actor))


@router.delete("/tickets/{ticket_id}", response_model=TicketResponse, summary="Close a ticket (admin)")
async def delete_ticket(
    ticket_id: str,
    actor: Actor = Depends(require_staff),
    service: TicketService = Depends(get_ticket_service)
):
    return TicketResponse.from_model(await service.delete_ticket(ticket_id, actor))


# ========== Messages ==========

@router.post(
    "/tickets/{ticket_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Post a message on a ticket"
)
async def add_message(
    ticket_id: str,
    payload: MessageCreateDTO,
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service)
):
    return MessageResponse.from_model(await service.add_message(ticket_id, actor, payload))


@router.get(
    "/tickets/{ticket_id}/messages",
    response_model=List[MessageResponse],
    summary="List the messages of a ticket"
)
async def get_ticket_messages(
    ticket_id: str,
    include_internal: bool = Query(False),
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service)
):
    messages = await service.get_ticket_messages(ticket_id, actor, include_internal)
    return [MessageResponse.from_model(m) for m in messages]


@router.post(
    "/messages/{message_id}/read",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Mark a message as read"
)
async def mark_message_read(
    message_id: str,
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service)
):
    await service.mark_message_read(message_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ========== Routing ==========

@router.post(
    "/tickets/{ticket_id}/escalate",
    response_model=TicketResponse,
    summary="Escalate a ticket",
    description="""
    Walks the escalation hierarchy of the ticket's business model and hands
    the ticket to the least-loaded available agent of the first role that
    has one. `escalate_to` pins a specific agent instead.
    """
)
async def escalate_ticket(
    ticket_id: str,
    payload: EscalateTicketDTO,
    actor: Actor = Depends(require_staff),
    service: TicketService = Depends(get_ticket_service)
):
    return TicketResponse.from_model(await service.escalate_ticket(ticket_id, actor, payload))


@router.post("/tickets/{ticket_id}/assign", response_model=TicketResponse, summary="Assign a ticket")
async def assign_ticket(
    ticket_id: str,
    payload: AssignTicketDTO,
    actor: Actor = Depends(require_staff),
    service: TicketService = Depends(get_ticket_service)
):
    return TicketResponse.from_model(await service.assign_ticket(ticket_id, payload, actor))


@router.post(
    "/tickets/{ticket_id}/satisfaction",
    response_model=SatisfactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Rate a resolved ticket"
)
async def submit_satisfaction(
    ticket_id: str,
    payload: SatisfactionDTO,
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service)
):
    survey = await service.submit_satisfaction(ticket_id, actor, payload)
    return SatisfactionResponse.from_model(survey)


# ========== Configuration ==========

@router.get("/config", response_model=SupportConfigResponse, summary="Get the support configuration")
async def get_config(
    business_model: Optional[BusinessModel] = Query(None),
    tenant_id: Optional[str] = Query(None),
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service)
):
    scope = _config_scope(actor, business_model, tenant_id)
    return SupportConfigResponse.from_config(await service.get_config(*scope))


@router.put("/config", response_model=SupportConfigResponse, summary="Create or update the support configuration")
async def update_config(
    patch: SupportConfigUpdate,
    business_model: Optional[BusinessModel] = Query(None),
    tenant_id: Optional[str] = Query(None),
    actor: Actor = Depends(require_staff),
    service: TicketService = Depends(get_ticket_service)
):
    bm, tenant = _config_scope(actor, business_model, tenant_id)
    return SupportConfigResponse.from_config(await service.update_config(actor, bm, tenant, patch))


# ========== Agents ==========

@router.get("/agents", response_model=List[AgentProfileResponse], summary="List support agents")
async def list_agents(
    business_model: Optional[BusinessModel] = Query(None),
    tenant_id: Optional[str] = Query(None),
    actor: Actor = Depends(require_staff),
    service: AgentDirectoryService = Depends(get_agent_service)
):
    agents = await service.list_agents(actor, business_model, tenant_id)
    return [AgentProfileResponse.from_model(model, count) for model, count in agents]


@router.put("/agents", response_model=AgentProfileResponse, summary="Create or update a support agent")
async def upsert_agent(
    profile: AgentProfileDTO,
    actor: Actor = Depends(require_staff),
    service: AgentDirectoryService = Depends(get_agent_service)
):
    model, count = await service.upsert_agent(actor, profile)
    return AgentProfileResponse.from_model(model, count)


# ========== Live events ==========

@router.websocket("/ws")
async def support_events(
    websocket: WebSocket,
    user_id: Optional[str] = Query(None),
    staff: bool = Query(False)
):
    """
    Ticket events for one user, or the shared support channel for staff.

    The identity comes from the gateway like the X-User-* headers of the
    HTTP routes.
    """
    user_id = user_id or websocket.headers.get("x-user-id")
    if not user_id and not staff:
        await websocket.close(code=4001, reason="Authentication required")
        return

    await websocket.accept()
    channel = SUPPORT_CHANNEL if staff else user_channel(user_id)
    await stream_channel(websocket, websocket.app.state.hub, channel)
