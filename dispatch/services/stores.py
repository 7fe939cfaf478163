"""
Store Adapters

SQLAlchemy-backed stores for tickets, employees, derivation records and
audit entries.

Each call opens its own session and commits exactly one entity write.
There are no cross-entity transactions: multi-entity workflows are ordered
sequences of these calls, and every step is independently visible.

Partial updates are dicts: a key mapped to None clears the field, a
missing key leaves it untouched.
"""
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from dispatch.core.config import settings
from dispatch.core.exceptions import NotFound, StoreUnavailable
from dispatch.models.audit import AuditLog
from dispatch.models.derivation import TicketDerivation, DerivationType, DerivationStatus
from dispatch.models.employee import Employee, AgentAvailability
from dispatch.models.schemas import TicketSchema, EmployeeSchema, DerivationSchema
from dispatch.models.ticket import Ticket, TicketStatus, TicketPriority, QueueType
from dispatch.services.change_feed import ChangeFeed
from dispatch.utils.clock import utcnow, local_business_day

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

MAX_NUMBER_ATTEMPTS = 10

TICKET_UPDATABLE_FIELDS = frozenset({
    "service_type", "service_subtype", "priority", "status",
    "queue_type", "assigned_to_employee", "queued_for_employee",
    "served_by", "served_at",
    "derived_from", "derived_to", "derived_at", "derivation_reason", "derivation_comment",
    "completed_at", "cancelled_at",
    "wait_time", "service_time", "total_time",
    "cancellation_reason", "cancellation_comment", "cancelled_by",
})

EMPLOYEE_UPDATABLE_FIELDS = frozenset({
    "name", "position", "availability", "current_ticket_id",
    "max_personal_queue_size", "auto_process_personal_queue",
})

EMPLOYEE_COUNTERS = frozenset({"total_tickets_served", "total_tickets_cancelled"})


def ticket_to_schema(row: Ticket) -> TicketSchema:
    """
    Convert a ticket row into a snapshot.

    Rows written by the older personal-queue mechanism
    (status = queued_for_employee) are read as waiting tickets in that
    agent's personal queue.
    """
    snapshot = TicketSchema.model_validate(row)
    if row.status == TicketStatus.QUEUED_FOR_EMPLOYEE:
        snapshot = snapshot.model_copy(update={
            "status": TicketStatus.WAITING,
            "queue_type": QueueType.PERSONAL,
            "assigned_to_employee": row.queued_for_employee or row.assigned_to_employee,
        })
    return snapshot


def _apply_fields(row: Any, fields: Dict[str, Any], allowed: frozenset, entity: str):
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Cannot update {entity} fields: {sorted(unknown)}")
    for field, value in fields.items():
        setattr(row, field, value)


class _SqlStore:
    """Shared session handling and change publishing."""

    collection = ""

    def __init__(self, session_maker: async_sessionmaker, feed: Optional[ChangeFeed] = None, clock: Clock = utcnow):
        self.session_maker = session_maker
        self.feed = feed or ChangeFeed()
        self.clock = clock

    @asynccontextmanager
    async def _session(self):
        try:
            async with self.session_maker() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"{self.collection} store I/O failed: {e}", exc_info=True)
            raise StoreUnavailable(f"{self.collection} store unavailable: {e}") from e

    async def _load_all(self) -> List[Any]:
        raise NotImplementedError

    async def _publish(self, entity_id: Optional[str]):
        await self.feed.publish(self.collection, entity_id, self._load_all)

    def subscribe(self, callback) -> Callable[[], None]:
        """Receive the full collection after every committed write."""
        return self.feed.subscribe(self.collection, callback)


class TicketStore(_SqlStore):
    """Ticket CRUD and change subscription."""

    collection = "tickets"

    async def _next_number(self, session, day: date) -> int:
        result = await session.execute(
            select(func.max(Ticket.number)).where(Ticket.business_day == day)
        )
        return (result.scalar() or 0) + 1

    async def create_ticket(
        self,
        service_type: str,
        service_subtype: Optional[str] = None,
        priority: TicketPriority = TicketPriority.NORMAL,
    ) -> TicketSchema:
        """
        Print a new ticket into the general queue with today's next number.

        The (business_day, number) pair is unique; a number taken by a
        concurrent printout is retried with the next one.
        """
        now = self.clock()
        day = local_business_day(now, settings.timezone)
        for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
            async with self._session() as session:
                number = await self._next_number(session, day)
                row = Ticket(
                    number=number,
                    business_day=day,
                    service_type=service_type,
                    service_subtype=service_subtype,
                    priority=priority,
                    status=TicketStatus.WAITING,
                    queue_type=QueueType.GENERAL,
                    created_at=now,
                )
                session.add(row)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    logger.warning(f"Ticket number {number} for {day} already taken (attempt {attempt})")
                    continue
                await session.refresh(row)
                ticket = ticket_to_schema(row)
            break
        else:
            raise StoreUnavailable(f"tickets store could not allocate a number for {day}")

        logger.info(f"Ticket created: {ticket.display_number} ({service_type})")
        await self._publish(ticket.id)
        return ticket

    async def update_ticket(self, ticket_id: str, fields: Dict[str, Any]) -> TicketSchema:
        """Apply a partial update; None clears a field."""
        async with self._session() as session:
            row = await session.get(Ticket, ticket_id)
            if row is None:
                raise NotFound("Ticket", ticket_id)
            _apply_fields(row, fields, TICKET_UPDATABLE_FIELDS, "ticket")
            if fields.get("status") is not None and fields["status"] != TicketStatus.QUEUED_FOR_EMPLOYEE:
                row.queued_for_employee = None
            await session.commit()
            ticket = ticket_to_schema(row)

        await self._publish(ticket_id)
        return ticket

    async def get_by_id(self, ticket_id: str) -> Optional[TicketSchema]:
        async with self._session() as session:
            row = await session.get(Ticket, ticket_id)
            return ticket_to_schema(row) if row else None

    async def get_today_by_number(self, number: int) -> Optional[TicketSchema]:
        """Find today's ticket by its printed number."""
        day = local_business_day(self.clock(), settings.timezone)
        async with self._session() as session:
            result = await session.execute(
                select(Ticket).where(Ticket.number == number, Ticket.business_day == day)
            )
            row = result.scalars().first()
            return ticket_to_schema(row) if row else None

    async def get_all_tickets(self) -> List[TicketSchema]:
        async with self._session() as session:
            result = await session.execute(select(Ticket).order_by(Ticket.created_at.desc()))
            return [ticket_to_schema(row) for row in result.scalars().all()]

    _load_all = get_all_tickets


class EmployeeStore(_SqlStore):
    """Employee CRUD and change subscription."""

    collection = "employees"

    async def create_employee(
        self,
        name: str,
        position: str = "",
        availability: AgentAvailability = AgentAvailability.ACTIVE,
        max_personal_queue_size: Optional[int] = None,
        auto_process_personal_queue: bool = True,
    ) -> EmployeeSchema:
        now = self.clock()
        async with self._session() as session:
            row = Employee(
                name=name,
                position=position,
                availability=availability,
                max_personal_queue_size=max_personal_queue_size or settings.default_max_personal_queue_size,
                auto_process_personal_queue=auto_process_personal_queue,
                total_tickets_served=0,
                total_tickets_cancelled=0,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            employee = EmployeeSchema.model_validate(row)

        logger.info(f"Employee created: {employee.name} ({employee.id})")
        await self._publish(employee.id)
        return employee

    async def update_employee(
        self,
        employee_id: str,
        fields: Dict[str, Any],
        increment: Optional[str] = None,
    ) -> EmployeeSchema:
        """
        Apply a partial update; None clears a field.

        Args:
            employee_id: Employee to update
            fields: Partial fields
            increment: Optional counter (total_tickets_served / total_tickets_cancelled)
                bumped by one in the same write

        Returns:
            Updated employee snapshot
        """
        if increment is not None and increment not in EMPLOYEE_COUNTERS:
            raise ValueError(f"Unknown employee counter: {increment}")

        async with self._session() as session:
            row = await session.get(Employee, employee_id)
            if row is None:
                raise NotFound("Employee", employee_id)
            _apply_fields(row, fields, EMPLOYEE_UPDATABLE_FIELDS, "employee")
            if increment is not None:
                setattr(row, increment, getattr(Employee, increment) + 1)
            row.updated_at = self.clock()
            await session.commit()
            await session.refresh(row)
            employee = EmployeeSchema.model_validate(row)

        await self._publish(employee_id)
        return employee

    async def get_by_id(self, employee_id: str) -> Optional[EmployeeSchema]:
        async with self._session() as session:
            row = await session.get(Employee, employee_id)
            return EmployeeSchema.model_validate(row) if row else None

    async def get_all_employees(self) -> List[EmployeeSchema]:
        """All employees in stable enumeration order (creation time, then name)."""
        async with self._session() as session:
            result = await session.execute(
                select(Employee).order_by(Employee.created_at.asc(), Employee.name.asc(), Employee.id.asc())
            )
            return [EmployeeSchema.model_validate(row) for row in result.scalars().all()]

    _load_all = get_all_employees


class DerivationStore(_SqlStore):
    """Append-only derivation records."""

    collection = "derivations"

    async def create_derivation(
        self,
        ticket_id: str,
        from_employee_id: str,
        derivation_type: DerivationType,
        status: DerivationStatus,
        to_employee_id: Optional[str] = None,
        reason: Optional[str] = None,
        comment: Optional[str] = None,
        new_service_type: Optional[str] = None,
    ) -> DerivationSchema:
        async with self._session() as session:
            row = TicketDerivation(
                ticket_id=ticket_id,
                from_employee_id=from_employee_id,
                to_employee_id=to_employee_id,
                derivation_type=derivation_type,
                reason=reason,
                comment=comment,
                new_service_type=new_service_type,
                status=status,
                derived_at=self.clock(),
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            record = DerivationSchema.model_validate(row)

        await self._publish(record.id)
        return record

    async def set_status(self, derivation_id: str, status: DerivationStatus) -> DerivationSchema:
        """Move a record to accepted/rejected, stamping the matching timestamp."""
        async with self._session() as session:
            row = await session.get(TicketDerivation, derivation_id)
            if row is None:
                raise NotFound("Derivation", derivation_id)
            row.status = status
            if status == DerivationStatus.ACCEPTED:
                row.accepted_at = self.clock()
            elif status == DerivationStatus.REJECTED:
                row.rejected_at = self.clock()
            await session.commit()
            record = DerivationSchema.model_validate(row)

        await self._publish(derivation_id)
        return record

    async def get_by_id(self, derivation_id: str) -> Optional[DerivationSchema]:
        async with self._session() as session:
            row = await session.get(TicketDerivation, derivation_id)
            return DerivationSchema.model_validate(row) if row else None

    async def list_all(self) -> List[DerivationSchema]:
        """All derivations, newest first."""
        async with self._session() as session:
            result = await session.execute(select(TicketDerivation).order_by(TicketDerivation.derived_at.desc()))
            return [DerivationSchema.model_validate(row) for row in result.scalars().all()]

    async def list_pending_for_agent(self, employee_id: str) -> List[DerivationSchema]:
        """Pending derivations addressed to an agent, oldest first."""
        async with self._session() as session:
            result = await session.execute(
                select(TicketDerivation)
                .where(
                    TicketDerivation.to_employee_id == employee_id,
                    TicketDerivation.status == DerivationStatus.PENDING,
                )
                .order_by(TicketDerivation.derived_at.asc())
            )
            return [DerivationSchema.model_validate(row) for row in result.scalars().all()]

    _load_all = list_all


class AuditStore(_SqlStore):
    """Append-only audit entries."""

    collection = "audit_logs"

    async def append(
        self,
        action: str,
        ticket_id: Optional[str] = None,
        employee_id: Optional[str] = None,
        from_employee: Optional[str] = None,
        to_employee: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> dict:
        async with self._session() as session:
            row = AuditLog(
                action=action,
                ticket_id=ticket_id,
                employee_id=employee_id,
                from_employee=from_employee,
                to_employee=to_employee,
                details=details or {},
                created_at=self.clock(),
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return row.to_dict()

    async def list_for_ticket(self, ticket_id: str) -> List[dict]:
        async with self._session() as session:
            result = await session.execute(
                select(AuditLog).where(AuditLog.ticket_id == ticket_id).order_by(AuditLog.created_at.asc())
            )
            return [row.to_dict() for row in result.scalars().all()]

    async def list_recent(self, limit: int = 100) -> List[dict]:
        async with self._session() as session:
            result = await session.execute(select(AuditLog).order_by(AuditLog.created_at.desc()).limit(limit))
            return [row.to_dict() for row in result.scalars().all()]
