"""
Tickets API Endpoints

Printing, searching and serving tickets, plus derivation and the
administrative edges. Dispatch errors are mapped to HTTP status codes by
the app-wide exception handler.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import List, Optional

from dispatch.api.deps import get_desk
from dispatch.core.exceptions import NotFound
from dispatch.models.schemas import (
    AdminDeriveToEmployeeSchema,
    CancelTicketSchema,
    CompleteTicketSchema,
    CompletionOutcomeSchema,
    DerivationOptions,
    DerivationOutcomeSchema,
    DeriveToEmployeeSchema,
    DeriveToQueueSchema,
    EmployeeActionSchema,
    StartServiceSchema,
    TicketCreateSchema,
    TicketSchema,
)
from dispatch.models.ticket import TicketStatus
from dispatch.services.desk import ServiceDesk
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tickets", tags=["tickets"])


# ========== Printing & lookup ==========

@router.post("", status_code=status.HTTP_201_CREATED, response_model=TicketSchema)
async def create_ticket(ticket_data: TicketCreateSchema, desk: ServiceDesk = Depends(get_desk)):
    """
    Print a new ticket.

    The ticket joins the general queue and is handed straight to the best
    available agent when there is one.
    """
    return await desk.lifecycle.create_ticket(
        ticket_data.service_type,
        ticket_data.service_subtype,
        ticket_data.priority,
    )


@router.get("", response_model=List[TicketSchema])
async def list_tickets(
    status: Optional[TicketStatus] = Query(None, description="Filter by ticket status"),
    limit: int = Query(100, ge=1, le=500, description="Max tickets to return"),
    desk: ServiceDesk = Depends(get_desk),
):
    """List tickets, newest first."""
    tickets = await desk.tickets.get_all_tickets()
    if status:
        tickets = [t for t in tickets if t.status == status]
    return tickets[:limit]


@router.get("/search", response_model=TicketSchema)
async def search_ticket(
    number: int = Query(..., ge=1, description="Printed ticket number"),
    desk: ServiceDesk = Depends(get_desk),
):
    """Find today's ticket by its printed number."""
    ticket = await desk.tickets.get_today_by_number(number)
    if ticket is None:
        raise HTTPException(status_code=404, detail=f"Ticket #{number:03d} not found today")
    return ticket


@router.get("/{ticket_id}", response_model=TicketSchema)
async def get_ticket(ticket_id: str, desk: ServiceDesk = Depends(get_desk)):
    ticket = await desk.tickets.get_by_id(ticket_id)
    if ticket is None:
        raise NotFound("Ticket", ticket_id)
    return ticket


@router.get("/{ticket_id}/audit")
async def get_ticket_audit(ticket_id: str, desk: ServiceDesk = Depends(get_desk)):
    """Audit trail of one ticket, oldest first."""
    return await desk.audit_log.list_for_ticket(ticket_id)


# ========== Serving (agent's current ticket) ==========

@router.post("/call-next", response_model=Optional[TicketSchema])
async def call_next_ticket(body: StartServiceSchema, desk: ServiceDesk = Depends(get_desk)):
    """Agent takes their next ticket (personal queue first). Null when nothing waits."""
    return await desk.lifecycle.start_service(body.employee_id, body.ticket_id)


@router.post("/complete", response_model=CompletionOutcomeSchema)
async def complete_ticket(body: CompleteTicketSchema, desk: ServiceDesk = Depends(get_desk)):
    """Finish the agent's current ticket, optionally calling the next one."""
    return await desk.lifecycle.complete_ticket(body.employee_id, body.call_next)


@router.post("/cancel", response_model=TicketSchema)
async def cancel_ticket(body: CancelTicketSchema, desk: ServiceDesk = Depends(get_desk)):
    return await desk.lifecycle.cancel_ticket(body.employee_id, body.reason, body.comment)


@router.post("/announce", response_model=TicketSchema)
async def announce_again(body: EmployeeActionSchema, desk: ServiceDesk = Depends(get_desk)):
    """Re-announce the agent's current ticket on the displays."""
    return await desk.lifecycle.announce_again(body.employee_id)


# ========== Derivation & administration ==========

@router.post("/{ticket_id}/derive/employee", response_model=DerivationOutcomeSchema)
async def derive_to_employee(
    ticket_id: str,
    body: DeriveToEmployeeSchema,
    desk: ServiceDesk = Depends(get_desk),
):
    """
    Hand a ticket being served to another agent.

    A free, active target takes it immediately; otherwise it waits in the
    target's personal queue.
    """
    return await desk.derivation.derive_to_employee(
        ticket_id,
        body.from_employee_id,
        body.to_employee_id,
        body,
    )


@router.post("/{ticket_id}/derive/queue", response_model=DerivationOutcomeSchema)
async def derive_to_queue(
    ticket_id: str,
    body: DeriveToQueueSchema,
    desk: ServiceDesk = Depends(get_desk),
):
    """Send a ticket being served back to the general queue."""
    return await desk.derivation.derive_to_general_queue(ticket_id, body.from_employee_id, body)


@router.post("/{ticket_id}/recall", response_model=TicketSchema)
async def recall_ticket(ticket_id: str, body: EmployeeActionSchema, desk: ServiceDesk = Depends(get_desk)):
    """Call a completed or cancelled ticket back into service."""
    return await desk.derivation.recall_ticket(body.employee_id, ticket_id)


@router.post("/{ticket_id}/force-complete", response_model=TicketSchema)
async def force_complete(ticket_id: str, desk: ServiceDesk = Depends(get_desk)):
    """Complete any open ticket (administration)."""
    return await desk.derivation.force_complete(ticket_id)


@router.post("/{ticket_id}/auto-assign")
async def auto_assign(ticket_id: str, desk: ServiceDesk = Depends(get_desk)):
    """Try to hand a waiting ticket to the best available agent."""
    employee = await desk.assignment.auto_assign_new_ticket(ticket_id)
    ticket = await desk.tickets.get_by_id(ticket_id)
    return {
        "assigned": employee is not None,
        "employee": employee,
        "ticket": ticket,
    }


@router.post("/{ticket_id}/admin-derive/employee", response_model=DerivationOutcomeSchema)
async def admin_derive_to_employee(
    ticket_id: str,
    body: AdminDeriveToEmployeeSchema,
    desk: ServiceDesk = Depends(get_desk),
):
    """
    Move any open ticket to an agent (administration).

    The serving agent, if any, is freed and paused. Priority defaults to high.
    """
    return await desk.derivation.admin_derive_to_employee(ticket_id, body.to_employee_id, body)


@router.post("/{ticket_id}/admin-derive/queue", response_model=DerivationOutcomeSchema)
async def admin_derive_to_queue(
    ticket_id: str,
    body: Optional[DerivationOptions] = None,
    desk: ServiceDesk = Depends(get_desk),
):
    """Send any open ticket back to the general queue (administration)."""
    return await desk.derivation.admin_derive_to_general_queue(ticket_id, body)
