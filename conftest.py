"""
Shared test fixtures.

Async scenarios run whole inside one asyncio.run(...) call: the desk,
its engine and every store call live on that one event loop.
"""
import itertools
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

import pytest

from dispatch.models.database import create_engine_and_sessions, create_tables
from dispatch.models.employee import AgentAvailability
from dispatch.models.schemas import EmployeeSchema, TicketSchema
from dispatch.models.ticket import QueueType, TicketStatus
from dispatch.services.desk import ServiceDesk
from dispatch.services.notifications import NotificationService

BASE_TIME = datetime(2026, 3, 2, 9, 0, 0)


class FakeClock:
    """Manually advanced naive-UTC clock."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class RecordingNotifications(NotificationService):
    """Keeps notifications in memory instead of delivering them."""

    def __init__(self):
        super().__init__(webhook_url="")
        self.sent = []

    async def notify(self, kind: str, title: str, body: str) -> bool:
        self.sent.append((kind, title, body))
        return True

    def kinds(self):
        return [kind for kind, _, _ in self.sent]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifications():
    return RecordingNotifications()


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}"


@pytest.fixture
def open_desk(database_url, clock, notifications):
    """
    Async context manager factory for a desk on a fresh SQLite database.

    Usage (inside the coroutine passed to asyncio.run):
        async with open_desk() as desk:
            ...
    """
    @asynccontextmanager
    async def _open():
        engine, session_maker = create_engine_and_sessions(database_url)
        await create_tables(engine)
        try:
            yield ServiceDesk(
                session_maker,
                notifications=notifications,
                clock=clock,
                settle_attempts=2,
                settle_delay=0,
            )
        finally:
            await engine.dispose()

    return _open


@pytest.fixture
def add_employee(clock):
    """Create an employee and tick the clock so enumeration order follows creation order."""
    async def _add(desk, name, availability=AgentAvailability.ACTIVE, **fields):
        employee = await desk.employees.create_employee(name, f"Box {name}", availability, **fields)
        clock.advance(1)
        return employee

    return _add


@pytest.fixture
def serving(clock):
    """Print a ticket (without auto-assign) and put it in service with an agent."""
    async def _serve(desk, employee, service_type="payments", **ticket_fields):
        ticket = await desk.tickets.create_ticket(service_type, **ticket_fields)
        clock.advance(5)
        assigned = await desk.assignment.assign(ticket.id, employee.id)
        assert assigned is not None
        return assigned

    return _serve


@pytest.fixture
def make_ticket():
    """Factory for in-memory ticket snapshots."""
    numbers = itertools.count(1)

    def _make(**fields):
        number = fields.pop("number", None) or next(numbers)
        values = {
            "id": f"tkt_{number:03d}",
            "number": number,
            "service_type": "payments",
            "status": TicketStatus.WAITING,
            "queue_type": QueueType.GENERAL,
            "created_at": BASE_TIME + timedelta(seconds=number),
        }
        values.update(fields)
        return TicketSchema(**values)

    return _make


@pytest.fixture
def make_employee():
    """Factory for in-memory employee snapshots."""
    numbers = itertools.count(1)

    def _make(**fields):
        number = next(numbers)
        values = {
            "id": f"emp_{number}",
            "name": f"Agent {number}",
            "availability": AgentAvailability.ACTIVE,
        }
        values.update(fields)
        return EmployeeSchema(**values)

    return _make
