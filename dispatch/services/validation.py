"""
Derivation Validation

Read-then-decide checks run immediately before a derivation. They never
write, and their result must not be cached: state can change between
the check and the write.
"""
import asyncio
import logging
from typing import List, Optional, Tuple

from dispatch.core.config import settings
from dispatch.core.exceptions import AgentInactive, InvalidTicketState, NotFound, QueueFull
from dispatch.models.schemas import EmployeeSchema, TicketSchema
from dispatch.models.ticket import TicketStatus
from dispatch.services.queue_ordering import personal_queue
from dispatch.services.stores import EmployeeStore, TicketStore

logger = logging.getLogger(__name__)


def _check_target(target: Optional[EmployeeSchema], tickets: List[TicketSchema], target_id: Optional[str]):
    if target is None:
        raise NotFound("Employee", target_id)

    if not target.is_active:
        raise AgentInactive(f"Employee {target.name} is not active", employee_id=target.id)

    max_size = target.max_personal_queue_size or settings.default_max_personal_queue_size
    queued = len(personal_queue(tickets, target.id))
    if queued >= max_size:
        raise QueueFull(
            f"Personal queue of {target.name} is full (max {max_size} tickets)",
            employee_id=target.id,
            queue_length=queued,
            max_size=max_size,
        )


def _check_being_served(ticket: TicketSchema, source_id: Optional[str]):
    if ticket.status != TicketStatus.BEING_SERVED:
        raise InvalidTicketState(
            "Only tickets being served can be derived",
            ticket_id=ticket.id,
            status=ticket.status.value,
        )
    if source_id is not None and ticket.served_by != source_id:
        raise InvalidTicketState(
            f"Ticket {ticket.display_number} is not served by {source_id}",
            ticket_id=ticket.id,
            served_by=ticket.served_by,
            from_employee_id=source_id,
        )


def _check_not_terminal(ticket: TicketSchema):
    if ticket.status.is_terminal:
        raise InvalidTicketState(
            f"Ticket {ticket.display_number} is already {ticket.status.value}",
            ticket_id=ticket.id,
            status=ticket.status.value,
        )


def check_derivation(
    ticket: Optional[TicketSchema],
    target: Optional[EmployeeSchema],
    tickets: List[TicketSchema],
    ticket_id: Optional[str] = None,
    target_id: Optional[str] = None,
    source_id: Optional[str] = None,
):
    """
    Decide whether a ticket may be derived to a target agent.

    When source_id is given the ticket must be served by that agent.

    Raises:
        NotFound: ticket or target agent missing
        AgentInactive: target agent not opted in
        QueueFull: target's personal queue at capacity
        InvalidTicketState: ticket not being served (by the source), or already served by the target
    """
    if ticket is None:
        raise NotFound("Ticket", ticket_id)
    _check_target(target, tickets, target_id)
    _check_being_served(ticket, source_id)
    if ticket.served_by == target.id:
        raise InvalidTicketState(
            f"Ticket {ticket.display_number} is already served by {target.name}",
            ticket_id=ticket.id,
        )


def check_derivation_to_queue(
    ticket: Optional[TicketSchema],
    ticket_id: Optional[str] = None,
    source_id: Optional[str] = None,
):
    """
    Decide whether a ticket may go back to the general queue.

    Raises:
        NotFound: ticket missing
        InvalidTicketState: ticket not being served, or served by someone other than source_id
    """
    if ticket is None:
        raise NotFound("Ticket", ticket_id)
    _check_being_served(ticket, source_id)


def check_admin_derivation(
    ticket: Optional[TicketSchema],
    target: Optional[EmployeeSchema],
    tickets: List[TicketSchema],
    ticket_id: Optional[str] = None,
    target_id: Optional[str] = None,
):
    """
    Administrative hand-off: any open ticket, waiting or being served.

    Raises:
        NotFound, AgentInactive, QueueFull: as for a regular derivation
        InvalidTicketState: ticket already finished, or already served by the target
    """
    if ticket is None:
        raise NotFound("Ticket", ticket_id)
    _check_target(target, tickets, target_id)
    _check_not_terminal(ticket)
    if ticket.served_by == target.id:
        raise InvalidTicketState(
            f"Ticket {ticket.display_number} is already served by {target.name}",
            ticket_id=ticket.id,
        )


def check_admin_derivation_to_queue(ticket: Optional[TicketSchema], ticket_id: Optional[str] = None):
    if ticket is None:
        raise NotFound("Ticket", ticket_id)
    _check_not_terminal(ticket)


class ValidationService:
    """Runs the checks against fresh store reads."""

    def __init__(self, tickets: TicketStore, employees: EmployeeStore):
        self.tickets = tickets
        self.employees = employees

    async def _fresh(
        self, ticket_id: str, target_employee_id: str
    ) -> Tuple[Optional[TicketSchema], Optional[EmployeeSchema], List[TicketSchema]]:
        all_tickets, target = await asyncio.gather(
            self.tickets.get_all_tickets(),
            self.employees.get_by_id(target_employee_id),
        )
        ticket = next((t for t in all_tickets if t.id == ticket_id), None)
        return ticket, target, all_tickets

    async def validate_derivation(
        self,
        ticket_id: str,
        target_employee_id: str,
        from_employee_id: Optional[str] = None,
    ) -> Tuple[TicketSchema, EmployeeSchema, List[TicketSchema]]:
        """Validate and return the fresh ticket, target and ticket snapshot used."""
        ticket, target, all_tickets = await self._fresh(ticket_id, target_employee_id)
        try:
            check_derivation(ticket, target, all_tickets, ticket_id, target_employee_id, from_employee_id)
        except Exception as e:
            logger.warning(f"Derivation of ticket {ticket_id} to {target_employee_id} rejected: {e}")
            raise
        return ticket, target, all_tickets

    async def validate_derivation_to_queue(
        self, ticket_id: str, from_employee_id: Optional[str] = None
    ) -> TicketSchema:
        ticket = await self.tickets.get_by_id(ticket_id)
        try:
            check_derivation_to_queue(ticket, ticket_id, from_employee_id)
        except Exception as e:
            logger.warning(f"Derivation of ticket {ticket_id} to general queue rejected: {e}")
            raise
        return ticket

    async def validate_admin_derivation(
        self, ticket_id: str, target_employee_id: str
    ) -> Tuple[TicketSchema, EmployeeSchema, List[TicketSchema]]:
        ticket, target, all_tickets = await self._fresh(ticket_id, target_employee_id)
        try:
            check_admin_derivation(ticket, target, all_tickets, ticket_id, target_employee_id)
        except Exception as e:
            logger.warning(f"Administrative derivation of ticket {ticket_id} to {target_employee_id} rejected: {e}")
            raise
        return ticket, target, all_tickets

    async def validate_admin_derivation_to_queue(self, ticket_id: str) -> TicketSchema:
        ticket = await self.tickets.get_by_id(ticket_id)
        try:
            check_admin_derivation_to_queue(ticket, ticket_id)
        except Exception as e:
            logger.warning(f"Administrative derivation of ticket {ticket_id} to general queue rejected: {e}")
            raise
        return ticket
