"""
Service Desk

Wires stores, change feed, engines and sinks around one session factory.
The FastAPI app keeps a single desk on app.state; tests build their own
against a throw-away database.
"""
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from dispatch.services.assignment import AssignmentEngine
from dispatch.services.audit import AuditService
from dispatch.services.change_feed import ChangeFeed
from dispatch.services.derivation import DerivationOrchestrator
from dispatch.services.dispatch_index import DispatchIndex
from dispatch.services.events import RedisEventBus
from dispatch.services.lifecycle import TicketLifecycleService
from dispatch.services.notifications import NotificationService
from dispatch.services.reconciliation import find_inconsistencies
from dispatch.services.stores import AuditStore, DerivationStore, EmployeeStore, TicketStore
from dispatch.services.validation import ValidationService
from dispatch.models.schemas import ReconciliationReportSchema
from dispatch.utils.clock import utcnow


class ServiceDesk:
    """Everything a request handler needs, built once."""

    def __init__(
        self,
        session_maker: async_sessionmaker,
        event_bus: Optional[RedisEventBus] = None,
        notifications: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = utcnow,
        settle_attempts: Optional[int] = None,
        settle_delay: Optional[float] = None,
    ):
        self.feed = ChangeFeed(event_bus)
        self.tickets = TicketStore(session_maker, self.feed, clock)
        self.employees = EmployeeStore(session_maker, self.feed, clock)
        self.derivations = DerivationStore(session_maker, self.feed, clock)
        self.audit_log = AuditStore(session_maker, self.feed, clock)

        self.notifications = notifications or NotificationService()
        self.audit = AuditService(self.audit_log)
        self.validation = ValidationService(self.tickets, self.employees)
        self.assignment = AssignmentEngine(
            self.tickets,
            self.employees,
            clock=clock,
            settle_attempts=settle_attempts,
            settle_delay=settle_delay,
        )
        self.derivation = DerivationOrchestrator(
            self.tickets,
            self.employees,
            self.derivations,
            self.validation,
            self.notifications,
            self.audit,
            clock=clock,
        )
        self.lifecycle = TicketLifecycleService(
            self.tickets,
            self.employees,
            self.assignment,
            self.audit,
            clock=clock,
        )
        self.index = DispatchIndex(self.tickets, self.employees, clock=clock)

    async def reconciliation_report(self) -> ReconciliationReportSchema:
        """Inconsistencies in a freshly loaded snapshot."""
        snapshot = await self.index.refresh()
        return find_inconsistencies(snapshot)
