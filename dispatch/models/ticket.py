"""
Ticket Model
One customer's request for service, from printout to completion.
"""
from sqlalchemy import Column, String, Date, DateTime, Integer, Enum as SQLEnum, UniqueConstraint
from dispatch.models.database import Base
from dispatch.utils.clock import utcnow
import uuid
import enum


class TicketStatus(str, enum.Enum):
    """Ticket lifecycle status."""
    WAITING = "waiting"  # In the general queue or an agent's personal queue
    QUEUED_FOR_EMPLOYEE = "queued_for_employee"  # Legacy personal-queue marker, normalised on read
    BEING_SERVED = "being_served"  # An agent is serving it
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TicketStatus.COMPLETED, TicketStatus.CANCELLED)


class TicketPriority(str, enum.Enum):
    """Priority levels, ranked by `rank`."""
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return {"normal": 1, "high": 2, "urgent": 3}[self.value]


class QueueType(str, enum.Enum):
    """Queue placement while waiting."""
    GENERAL = "general"
    PERSONAL = "personal"


class Ticket(Base):
    """Ticket model."""
    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("business_day", "number", name="uq_tickets_business_day_number"),
    )

    # Primary Key
    id = Column(String, primary_key=True, default=lambda: f"tkt_{uuid.uuid4().hex[:12]}")

    # Per-day sequence, reset at local midnight; unique within a business day
    number = Column(Integer, nullable=False, index=True)
    business_day = Column(Date, nullable=False, index=True)

    # Classification
    service_type = Column(String, nullable=False)
    service_subtype = Column(String, nullable=True)
    priority = Column(SQLEnum(TicketPriority), default=TicketPriority.NORMAL, nullable=False)

    # Lifecycle
    status = Column(SQLEnum(TicketStatus), default=TicketStatus.WAITING, nullable=False, index=True)

    # Queue placement (meaningful only while waiting)
    queue_type = Column(SQLEnum(QueueType), nullable=True)
    assigned_to_employee = Column(String, nullable=True, index=True)
    queued_for_employee = Column(String, nullable=True)  # Legacy, read-only

    # Service linkage
    served_by = Column(String, nullable=True, index=True)
    served_at = Column(DateTime, nullable=True)

    # Derivation linkage
    derived_from = Column(String, nullable=True)
    derived_to = Column(String, nullable=True)
    derived_at = Column(DateTime, nullable=True)
    derivation_reason = Column(String, nullable=True)
    derivation_comment = Column(String, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    # Metrics (seconds, computed at the terminal transition)
    wait_time = Column(Integer, nullable=True)
    service_time = Column(Integer, nullable=True)
    total_time = Column(Integer, nullable=True)

    # Cancellation metadata
    cancellation_reason = Column(String, nullable=True)
    cancellation_comment = Column(String, nullable=True)
    cancelled_by = Column(String, nullable=True)

    def __repr__(self):
        return f"<Ticket {self.id} #{self.number} ({self.status.value if self.status else None})>"
