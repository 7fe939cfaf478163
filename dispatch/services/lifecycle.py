"""
Ticket Lifecycle Service

Everyday counter operations: printing tickets, calling the next one,
completing, cancelling, re-announcing, and agent availability changes.
Derivation and administrative edges live in the derivation orchestrator.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from dispatch.core.exceptions import (
    AgentBusy,
    AgentInactive,
    DispatchError,
    InvalidTicketState,
    NotFound,
)
from dispatch.models.employee import AgentAvailability
from dispatch.models.schemas import (
    CompletionOutcomeSchema,
    EmployeeSchema,
    QueueStatsSchema,
    TicketSchema,
)
from dispatch.models.ticket import TicketPriority, TicketStatus
from dispatch.services.assignment import AssignmentEngine
from dispatch.services.audit import AuditService
from dispatch.services.queue_ordering import next_for_agent, queue_stats
from dispatch.services.stores import EmployeeStore, TicketStore
from dispatch.utils.clock import seconds_between, utcnow
from dispatch.utils.safe_accessors import DataIntegrityLogger, run_side_effect

logger = logging.getLogger(__name__)

TOGGLE_TRANSITIONS = {
    AgentAvailability.INACTIVE: AgentAvailability.ACTIVE,
    AgentAvailability.ACTIVE: AgentAvailability.INACTIVE,
    AgentAvailability.PAUSED: AgentAvailability.INACTIVE,
}


class TicketLifecycleService:
    """Ticket and agent lifecycle workflows."""

    def __init__(
        self,
        tickets: TicketStore,
        employees: EmployeeStore,
        assignment: AssignmentEngine,
        audit: AuditService,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.tickets = tickets
        self.employees = employees
        self.assignment = assignment
        self.audit = audit
        self.clock = clock

    async def _get_employee(self, employee_id: str) -> EmployeeSchema:
        employee = await self.employees.get_by_id(employee_id)
        if employee is None:
            raise NotFound("Employee", employee_id)
        return employee

    async def _current_ticket(self, employee: EmployeeSchema) -> TicketSchema:
        """The ticket an agent is serving right now."""
        if not employee.current_ticket_id:
            raise InvalidTicketState(f"{employee.name} is not serving a ticket", employee_id=employee.id)
        ticket = await self.tickets.get_by_id(employee.current_ticket_id)
        if ticket is None:
            DataIntegrityLogger.log_missing_ticket(employee.id, employee.current_ticket_id)
            raise NotFound("Ticket", employee.current_ticket_id)
        if ticket.status != TicketStatus.BEING_SERVED:
            raise InvalidTicketState(
                f"Ticket {ticket.display_number} is {ticket.status.value}, not being served",
                ticket_id=ticket.id,
                status=ticket.status.value,
            )
        return ticket

    # ========== Tickets ==========

    async def create_ticket(
        self,
        service_type: str,
        service_subtype: Optional[str] = None,
        priority: TicketPriority = TicketPriority.NORMAL,
    ) -> TicketSchema:
        """
        Print a ticket and try to hand it to an available agent.

        Returns:
            The ticket as it stands after the auto-assign attempt
        """
        ticket = await self.tickets.create_ticket(service_type, service_subtype, priority)

        try:
            agent = await self.assignment.auto_assign_new_ticket(ticket.id)
        except DispatchError as e:
            # The ticket exists either way; it simply stays waiting
            logger.warning(f"Auto-assign after creating {ticket.display_number} failed: {e}")
            return ticket

        if agent is None:
            return ticket
        return await self.tickets.get_by_id(ticket.id) or ticket

    async def start_service(self, employee_id: str, ticket_id: Optional[str] = None) -> Optional[TicketSchema]:
        """
        Agent calls their next ticket (personal queue first).

        Args:
            employee_id: Calling agent
            ticket_id: Optional ticket the agent expects; must be their next one

        Returns:
            Ticket now being served, or None when nothing is waiting

        Raises:
            AgentBusy: agent already serving
            AgentInactive: agent not working
            InvalidTicketState: ticket_id is not the agent's next ticket, or it was taken meanwhile
        """
        tickets, employee = await asyncio.gather(
            self.tickets.get_all_tickets(),
            self._get_employee(employee_id),
        )
        if employee.current_ticket_id:
            raise AgentBusy(
                f"{employee.name} is already serving {employee.current_ticket_id}",
                employee_id=employee.id,
                current_ticket_id=employee.current_ticket_id,
            )
        if employee.availability == AgentAvailability.INACTIVE:
            raise AgentInactive(f"Employee {employee.name} is not active", employee_id=employee.id)

        candidate = next_for_agent(tickets, employee.id)
        if candidate is None:
            logger.info(f"No tickets waiting for {employee.name}")
            return None
        if ticket_id and candidate.id != ticket_id:
            raise InvalidTicketState(
                f"Ticket {ticket_id} is not next for {employee.name}",
                ticket_id=ticket_id,
                next_ticket_id=candidate.id,
            )

        assigned = await self.assignment.assign(candidate.id, employee.id, allow_paused=True)
        if assigned is None:
            raise InvalidTicketState(
                f"Ticket {candidate.display_number} was taken before {employee.name} could call it",
                ticket_id=candidate.id,
            )
        return assigned

    async def complete_ticket(self, employee_id: str, call_next: bool = False) -> CompletionOutcomeSchema:
        """
        Finish the agent's current ticket.

        With call_next the agent stays active and immediately takes the next
        ticket (if any); otherwise the agent is paused.
        """
        employee = await self._get_employee(employee_id)
        ticket = await self._current_ticket(employee)
        now = self.clock()

        completed_steps = []
        try:
            completed = await self.tickets.update_ticket(ticket.id, {
                "status": TicketStatus.COMPLETED,
                "completed_at": now,
                "service_time": seconds_between(ticket.served_at, now),
                "total_time": seconds_between(ticket.created_at, now),
            })
            completed_steps.append("ticket")
            employee = await self.employees.update_employee(
                employee.id,
                {
                    "current_ticket_id": None,
                    "availability": AgentAvailability.ACTIVE if call_next else AgentAvailability.PAUSED,
                },
                increment="total_tickets_served",
            )
            completed_steps.append("employee")
        except Exception as e:
            if completed_steps:
                DataIntegrityLogger.log_partial_workflow("complete_ticket", ticket.id, completed_steps, e)
            raise

        logger.info(f"Ticket {ticket.display_number} completed by {employee.name}")
        await run_side_effect(
            "completion_audit",
            self.audit.log_ticket_completion(completed, employee),
            ticket_id=ticket.id,
        )

        next_ticket = None
        if call_next:
            next_ticket = await self.assignment.auto_assign_next_ticket_settled(employee.id)
            if next_ticket is not None:
                employee = await self._get_employee(employee.id)

        return CompletionOutcomeSchema(ticket=completed, employee=employee, next_ticket=next_ticket)

    async def cancel_ticket(self, employee_id: str, reason: str, comment: Optional[str] = None) -> TicketSchema:
        """Cancel the agent's current ticket (e.g. the customer left); the agent is paused."""
        employee = await self._get_employee(employee_id)
        ticket = await self._current_ticket(employee)
        now = self.clock()

        completed_steps = []
        try:
            cancelled = await self.tickets.update_ticket(ticket.id, {
                "status": TicketStatus.CANCELLED,
                "cancelled_at": now,
                "service_time": seconds_between(ticket.served_at, now),
                "total_time": seconds_between(ticket.created_at, now),
                "cancellation_reason": reason,
                "cancellation_comment": comment,
                "cancelled_by": employee.id,
            })
            completed_steps.append("ticket")
            employee = await self.employees.update_employee(
                employee.id,
                {"current_ticket_id": None, "availability": AgentAvailability.PAUSED},
                increment="total_tickets_cancelled",
            )
            completed_steps.append("employee")
        except Exception as e:
            if completed_steps:
                DataIntegrityLogger.log_partial_workflow("cancel_ticket", ticket.id, completed_steps, e)
            raise

        logger.info(f"Ticket {ticket.display_number} cancelled by {employee.name}: {reason}")
        await run_side_effect(
            "cancellation_audit",
            self.audit.log_ticket_cancellation(cancelled, employee),
            ticket_id=ticket.id,
        )
        return cancelled

    async def announce_again(self, employee_id: str) -> TicketSchema:
        """Re-announce the current ticket; displays react to the new served_at."""
        employee = await self._get_employee(employee_id)
        ticket = await self._current_ticket(employee)
        announced = await self.tickets.update_ticket(ticket.id, {"served_at": self.clock()})
        logger.info(f"Ticket {ticket.display_number} announced again by {employee.name}")
        return announced

    # ========== Availability ==========

    async def _change_availability(
        self,
        employee: EmployeeSchema,
        new_availability: AgentAvailability,
        action: str,
    ) -> EmployeeSchema:
        if employee.current_ticket_id:
            raise AgentBusy(
                f"{employee.name} must finish ticket {employee.current_ticket_id} first",
                employee_id=employee.id,
                current_ticket_id=employee.current_ticket_id,
            )
        if employee.availability == new_availability:
            return employee

        previous = employee.availability
        employee = await self.employees.update_employee(employee.id, {"availability": new_availability})
        logger.info(f"{employee.name}: {previous.value} -> {new_availability.value}")
        await run_side_effect(
            "availability_audit",
            self.audit.log_employee_state_change(
                employee, action, {"from": previous.value, "to": new_availability.value}
            ),
            employee_id=employee.id,
        )

        if new_availability == AgentAvailability.ACTIVE:
            assigned = await self.assignment.auto_assign_next_ticket_settled(employee.id)
            if assigned is not None:
                employee = await self._get_employee(employee.id)
        return employee

    async def toggle_availability(self, employee_id: str) -> EmployeeSchema:
        """Start or stop working (inactive <-> active; paused stops working)."""
        employee = await self._get_employee(employee_id)
        return await self._change_availability(employee, TOGGLE_TRANSITIONS[employee.availability], "toggled")

    async def pause(self, employee_id: str) -> EmployeeSchema:
        employee = await self._get_employee(employee_id)
        if employee.availability == AgentAvailability.INACTIVE:
            raise AgentInactive(f"Employee {employee.name} is not active", employee_id=employee.id)
        return await self._change_availability(employee, AgentAvailability.PAUSED, "paused")

    async def resume(self, employee_id: str) -> EmployeeSchema:
        employee = await self._get_employee(employee_id)
        if employee.availability == AgentAvailability.INACTIVE:
            raise AgentInactive(f"Employee {employee.name} is not active", employee_id=employee.id)
        return await self._change_availability(employee, AgentAvailability.ACTIVE, "resumed")

    # ========== Queue views ==========

    async def queue_stats(self, employee_id: str) -> QueueStatsSchema:
        tickets, employee = await asyncio.gather(
            self.tickets.get_all_tickets(),
            self._get_employee(employee_id),
        )
        return queue_stats(tickets, employee.id)

    async def peek_next_ticket(self, employee_id: str) -> Optional[TicketSchema]:
        """Ticket the agent would take next, without taking it."""
        tickets, employee = await asyncio.gather(
            self.tickets.get_all_tickets(),
            self._get_employee(employee_id),
        )
        return next_for_agent(tickets, employee.id)
