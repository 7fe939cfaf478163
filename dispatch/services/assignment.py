"""
Assignment Engine

Selects the best agent for a waiting ticket and the next ticket for a
free agent, then performs the two-write assignment (ticket, then agent).

`current_ticket_id` is the single source of truth for "can this agent
take a ticket"; both the agent and the ticket are re-read immediately
before the writes, never taken from an earlier snapshot.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

from dispatch.core.config import settings
from dispatch.core.exceptions import InvalidTicketState, NotFound
from dispatch.models.employee import AgentAvailability
from dispatch.models.schemas import EmployeeSchema, TicketSchema
from dispatch.models.ticket import TicketStatus, QueueType
from dispatch.services.queue_ordering import next_for_agent
from dispatch.services.stores import EmployeeStore, TicketStore
from dispatch.services.workload import is_available_for_assignment, workload_score
from dispatch.utils.clock import seconds_between, utcnow

logger = logging.getLogger(__name__)

# Bounded retries when another dispatcher wins a race for the same ticket/agent
MAX_ASSIGNMENT_ATTEMPTS = 3


def rank_agents(
    employees: Iterable[EmployeeSchema], tickets: Iterable[TicketSchema]
) -> List[Tuple[EmployeeSchema, int]]:
    """Active agents that may take a ticket now, best first; ties keep enumeration order."""
    tickets = list(tickets)
    scored = [(employee, workload_score(employee, tickets)) for employee in employees if employee.is_active]
    available = [(employee, score) for employee, score in scored if is_available_for_assignment(score)]
    return sorted(available, key=lambda pair: pair[1])


def find_best_available_agent(
    employees: Iterable[EmployeeSchema], tickets: Iterable[TicketSchema]
) -> Optional[EmployeeSchema]:
    """Minimum-score active agent under the busy threshold, or None."""
    ranked = rank_agents(employees, tickets)
    return ranked[0][0] if ranked else None


class AssignmentEngine:
    """Ticket-to-agent assignment."""

    def __init__(
        self,
        tickets: TicketStore,
        employees: EmployeeStore,
        clock: Callable[[], datetime] = utcnow,
        settle_attempts: Optional[int] = None,
        settle_delay: Optional[float] = None,
    ):
        self.tickets = tickets
        self.employees = employees
        self.clock = clock
        self.settle_attempts = settle_attempts or settings.auto_assign_settle_attempts
        self.settle_delay = settings.auto_assign_settle_delay_seconds if settle_delay is None else settle_delay

    async def _snapshot(self) -> Tuple[List[TicketSchema], List[EmployeeSchema]]:
        tickets, employees = await asyncio.gather(
            self.tickets.get_all_tickets(),
            self.employees.get_all_employees(),
        )
        return tickets, employees

    async def find_best_available_agent(self) -> Optional[EmployeeSchema]:
        """Best agent against a fresh snapshot."""
        tickets, employees = await self._snapshot()
        return find_best_available_agent(employees, tickets)

    async def assign(self, ticket_id: str, employee_id: str, allow_paused: bool = False) -> Optional[TicketSchema]:
        """
        Put a waiting ticket in service with an agent.

        Re-reads both entities first. Returns None without writing when the
        agent is no longer free and active, or the ticket is no longer waiting.
        allow_paused lets an explicit call from a paused agent through; the
        assignment makes them active again.
        """
        ticket, agent = await asyncio.gather(
            self.tickets.get_by_id(ticket_id),
            self.employees.get_by_id(employee_id),
        )
        if ticket is None:
            raise NotFound("Ticket", ticket_id)
        if agent is None:
            raise NotFound("Employee", employee_id)

        allowed = (AgentAvailability.ACTIVE, AgentAvailability.PAUSED) if allow_paused else (AgentAvailability.ACTIVE,)
        if agent.current_ticket_id or agent.availability not in allowed:
            logger.info(f"Assignment of {ticket.display_number} skipped: {agent.name} is no longer free")
            return None
        if ticket.status != TicketStatus.WAITING:
            logger.info(f"Assignment of {ticket.display_number} skipped: ticket is {ticket.status.value}")
            return None

        now = self.clock()
        # Step 1: ticket transition
        assigned = await self.tickets.update_ticket(ticket.id, {
            "status": TicketStatus.BEING_SERVED,
            "served_by": agent.id,
            "served_at": now,
            "wait_time": seconds_between(ticket.created_at, now),
            "queue_type": None,
            "assigned_to_employee": None,
        })
        # Step 2: agent takes it
        await self.employees.update_employee(agent.id, {
            "current_ticket_id": ticket.id,
            "availability": AgentAvailability.ACTIVE,
        })

        logger.info(f"Ticket {ticket.display_number} assigned to {agent.name}")
        return assigned

    async def auto_assign_new_ticket(self, ticket_id: str) -> Optional[EmployeeSchema]:
        """
        Hand a freshly waiting ticket to the best available agent.

        Returns:
            The agent now serving it, or None if nobody qualifies (ticket stays waiting)

        Raises:
            NotFound: ticket missing
            InvalidTicketState: ticket not waiting, or already in an agent's personal queue
        """
        tickets, employees = await self._snapshot()
        ticket = next((t for t in tickets if t.id == ticket_id), None)
        if ticket is None:
            raise NotFound("Ticket", ticket_id)
        if ticket.status != TicketStatus.WAITING:
            raise InvalidTicketState(
                f"Ticket {ticket.display_number} is {ticket.status.value}, not waiting",
                ticket_id=ticket.id,
            )
        if ticket.queue_type == QueueType.PERSONAL and ticket.assigned_to_employee:
            raise InvalidTicketState(
                f"Ticket {ticket.display_number} is already in a personal queue",
                ticket_id=ticket.id,
                assigned_to_employee=ticket.assigned_to_employee,
            )

        for agent, score in rank_agents(employees, tickets)[:MAX_ASSIGNMENT_ATTEMPTS]:
            assigned = await self.assign(ticket.id, agent.id)
            if assigned is not None:
                logger.info(f"Auto-assigned new ticket {ticket.display_number} to {agent.name} (score {score})")
                return agent
            current = await self.tickets.get_by_id(ticket.id)
            if current is None or current.status != TicketStatus.WAITING:
                return None

        logger.info(f"No available agent for ticket {ticket.display_number}; it stays waiting")
        return None

    async def auto_assign_next_ticket(self, employee_id: str) -> Optional[TicketSchema]:
        """
        Give a free, active agent their next ticket (personal queue first).

        Returns:
            The ticket now being served, or None when the agent cannot take
            one or nothing is waiting. Calling it with nothing to do is a no-op.

        Raises:
            NotFound: agent missing
        """
        for _ in range(MAX_ASSIGNMENT_ATTEMPTS):
            tickets, agent = await asyncio.gather(
                self.tickets.get_all_tickets(),
                self.employees.get_by_id(employee_id),
            )
            if agent is None:
                raise NotFound("Employee", employee_id)
            if agent.availability != AgentAvailability.ACTIVE or agent.current_ticket_id:
                logger.info(f"Auto-assign skipped for {agent.name}: {agent.availability.value}, "
                            f"current ticket {agent.current_ticket_id}")
                return None

            candidate = next_for_agent(tickets, agent.id)
            if candidate is None:
                logger.info(f"No tickets waiting for {agent.name}")
                return None

            assigned = await self.assign(candidate.id, agent.id)
            if assigned is not None:
                return assigned
            # Lost a race for that ticket or the agent; recompute from fresh state

        return None

    async def auto_assign_next_ticket_settled(self, employee_id: str) -> Optional[TicketSchema]:
        """
        Settle-and-retry variant used after an availability change.

        Re-reads the agent until the triggering write is visible (active and
        free), then runs auto_assign_next_ticket. Gives up quietly after the
        configured attempts.
        """
        for attempt in range(self.settle_attempts):
            agent = await self.employees.get_by_id(employee_id)
            if agent is None:
                raise NotFound("Employee", employee_id)
            if agent.availability == AgentAvailability.ACTIVE and not agent.current_ticket_id:
                return await self.auto_assign_next_ticket(employee_id)
            if attempt < self.settle_attempts - 1:
                await asyncio.sleep(self.settle_delay)

        logger.info(f"Agent {employee_id} did not settle as free and active; auto-assign skipped")
        return None
