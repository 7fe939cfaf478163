"""
Employee Model
Agents who serve tickets at the counter.
"""
from sqlalchemy import Column, String, Boolean, DateTime, Integer, Enum as SQLEnum
from dispatch.models.database import Base
from dispatch.utils.clock import utcnow
from dispatch.core.config import settings
import uuid
import enum


class AgentAvailability(str, enum.Enum):
    """
    Agent availability, one value instead of two independent flags.

    ACTIVE   -> opted in and receiving tickets (is_active, not is_paused)
    PAUSED   -> opted in but temporarily not receiving (is_active, is_paused)
    INACTIVE -> not working (not is_active, is_paused)
    """
    ACTIVE = "active"
    PAUSED = "paused"
    INACTIVE = "inactive"

    @property
    def is_active(self) -> bool:
        return self in (AgentAvailability.ACTIVE, AgentAvailability.PAUSED)

    @property
    def is_paused(self) -> bool:
        return self in (AgentAvailability.PAUSED, AgentAvailability.INACTIVE)


class Employee(Base):
    """Employee model - counter agents."""
    __tablename__ = "employees"

    # Primary Key
    id = Column(String, primary_key=True, default=lambda: f"emp_{uuid.uuid4().hex[:12]}")

    # Profile
    name = Column(String, nullable=False)
    position = Column(String, nullable=False, default="")

    # Availability
    availability = Column(SQLEnum(AgentAvailability), default=AgentAvailability.ACTIVE, nullable=False)

    # At most one ticket being served
    current_ticket_id = Column(String, nullable=True)

    # Counters (only incremented at terminal transitions)
    total_tickets_served = Column(Integer, default=0, nullable=False)
    total_tickets_cancelled = Column(Integer, default=0, nullable=False)

    # Personal queue configuration
    max_personal_queue_size = Column(
        Integer, default=lambda: settings.default_max_personal_queue_size, nullable=False
    )
    auto_process_personal_queue = Column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Employee {self.id} ({self.name}) - {self.availability.value if self.availability else None}>"
