"""
Dispatch Index

Single in-memory view of tickets and employees, rebuilt from the store
change feed. Each reader gets one immutable snapshot, so a computation
never mixes lists from before and after a concurrent write.

Workflows that write still re-read from the stores right before writing;
the index serves queue displays, statistics and reconciliation.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from pydantic import BaseModel

from dispatch.models.schemas import EmployeeSchema, QueueStatsSchema, TicketSchema
from dispatch.services import queue_ordering
from dispatch.services.stores import EmployeeStore, TicketStore
from dispatch.services.workload import workload_score
from dispatch.utils.clock import utcnow

logger = logging.getLogger(__name__)


class DispatchSnapshot(BaseModel):
    """Immutable tickets + employees view taken at one instant."""
    tickets: Tuple[TicketSchema, ...] = ()
    employees: Tuple[EmployeeSchema, ...] = ()
    taken_at: datetime

    class Config:
        frozen = True

    def ticket(self, ticket_id: str) -> Optional[TicketSchema]:
        return next((t for t in self.tickets if t.id == ticket_id), None)

    def employee(self, employee_id: str) -> Optional[EmployeeSchema]:
        return next((e for e in self.employees if e.id == employee_id), None)

    def general_queue(self) -> List[TicketSchema]:
        return queue_ordering.general_queue(self.tickets)

    def personal_queue(self, employee_id: str) -> List[TicketSchema]:
        return queue_ordering.personal_queue(self.tickets, employee_id)

    def next_for_agent(self, employee_id: str) -> Optional[TicketSchema]:
        return queue_ordering.next_for_agent(self.tickets, employee_id)

    def queue_stats(self, employee_id: str) -> QueueStatsSchema:
        return queue_ordering.queue_stats(self.tickets, employee_id)

    def workload(self, employee_id: str) -> Optional[int]:
        employee = self.employee(employee_id)
        if employee is None:
            return None
        return workload_score(employee, list(self.tickets))


class DispatchIndex:
    """Holds the latest snapshot and keeps it current from store subscriptions."""

    def __init__(self, tickets: TicketStore, employees: EmployeeStore, clock: Callable[[], datetime] = utcnow):
        self.tickets = tickets
        self.employees = employees
        self.clock = clock
        self._snapshot = DispatchSnapshot(taken_at=clock())
        self._unsubscribers: List[Callable[[], None]] = []
        self.warm = False

    def snapshot(self) -> DispatchSnapshot:
        return self._snapshot

    async def refresh(self) -> DispatchSnapshot:
        """Reload both collections from the stores."""
        tickets, employees = await asyncio.gather(
            self.tickets.get_all_tickets(),
            self.employees.get_all_employees(),
        )
        self._snapshot = DispatchSnapshot(
            tickets=tuple(tickets),
            employees=tuple(employees),
            taken_at=self.clock(),
        )
        self.warm = True
        logger.debug(f"Dispatch index refreshed: {len(tickets)} tickets, {len(employees)} employees")
        return self._snapshot

    async def on_remote_change(self, collection: str, event: dict):
        """Another process wrote; its store writes never reach our subscriptions."""
        logger.debug(f"Remote {collection} change {event.get('id')}, refreshing dispatch index")
        await self.refresh()

    def _on_tickets(self, tickets: List[TicketSchema]):
        self._snapshot = self._snapshot.model_copy(update={"tickets": tuple(tickets), "taken_at": self.clock()})

    def _on_employees(self, employees: List[EmployeeSchema]):
        self._snapshot = self._snapshot.model_copy(update={"employees": tuple(employees), "taken_at": self.clock()})

    async def start(self) -> DispatchSnapshot:
        """Subscribe to both stores and warm up."""
        if not self._unsubscribers:
            self._unsubscribers = [
                self.tickets.subscribe(self._on_tickets),
                self.employees.subscribe(self._on_employees),
            ]
        return await self.refresh()

    def stop(self):
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
