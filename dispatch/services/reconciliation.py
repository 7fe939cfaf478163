"""
Reconciliation Report

Read-only pass over a dispatch snapshot that lists where ticket and agent
views disagree, typically after a saga aborted halfway. Nothing is
repaired here.
"""
import logging
from typing import List

from dispatch.models.schemas import InconsistencySchema, ReconciliationReportSchema
from dispatch.models.ticket import TicketStatus
from dispatch.services.dispatch_index import DispatchSnapshot

logger = logging.getLogger(__name__)


def find_inconsistencies(snapshot: DispatchSnapshot) -> ReconciliationReportSchema:
    findings: List[InconsistencySchema] = []
    tickets_by_id = {t.id: t for t in snapshot.tickets}
    employees_by_id = {e.id: e for e in snapshot.employees}

    for employee in snapshot.employees:
        if not employee.current_ticket_id:
            continue
        ticket = tickets_by_id.get(employee.current_ticket_id)
        if ticket is None:
            findings.append(InconsistencySchema(
                kind="agent_ticket_missing",
                employee_id=employee.id,
                ticket_id=employee.current_ticket_id,
                detail=f"{employee.name} points at a ticket that does not exist",
            ))
        elif ticket.status != TicketStatus.BEING_SERVED or ticket.served_by != employee.id:
            findings.append(InconsistencySchema(
                kind="agent_ticket_mismatch",
                employee_id=employee.id,
                ticket_id=ticket.id,
                detail=(
                    f"{employee.name} holds {ticket.display_number}, which is {ticket.status.value} "
                    f"and served by {ticket.served_by or 'nobody'}"
                ),
            ))

    for ticket in snapshot.tickets:
        if ticket.served_by and ticket.assigned_to_employee:
            findings.append(InconsistencySchema(
                kind="ticket_placement_conflict",
                ticket_id=ticket.id,
                employee_id=ticket.served_by,
                detail=(
                    f"{ticket.display_number} is served by {ticket.served_by} "
                    f"and queued for {ticket.assigned_to_employee}"
                ),
            ))

        if ticket.status == TicketStatus.BEING_SERVED:
            if not ticket.served_by:
                findings.append(InconsistencySchema(
                    kind="ticket_without_agent",
                    ticket_id=ticket.id,
                    detail=f"{ticket.display_number} is being served by nobody",
                ))
                continue
            agent = employees_by_id.get(ticket.served_by)
            if agent is None or agent.current_ticket_id != ticket.id:
                findings.append(InconsistencySchema(
                    kind="ticket_agent_mismatch",
                    ticket_id=ticket.id,
                    employee_id=ticket.served_by,
                    detail=f"{ticket.display_number} is served by {ticket.served_by}, who does not point back",
                ))
        elif ticket.status == TicketStatus.WAITING and ticket.served_by:
            findings.append(InconsistencySchema(
                kind="waiting_ticket_served",
                ticket_id=ticket.id,
                employee_id=ticket.served_by,
                detail=f"{ticket.display_number} is waiting but still names {ticket.served_by} as server",
            ))

    if findings:
        logger.warning(f"Reconciliation found {len(findings)} inconsistencies")

    return ReconciliationReportSchema(
        checked_tickets=len(snapshot.tickets),
        checked_employees=len(snapshot.employees),
        inconsistencies=findings,
    )
