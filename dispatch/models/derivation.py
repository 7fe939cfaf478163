"""
Ticket Derivation Model
Append-only record of every hand-off of a ticket to another agent or back to the general queue.
"""
from sqlalchemy import Column, String, DateTime, Enum as SQLEnum, Text
from dispatch.models.database import Base
from dispatch.utils.clock import utcnow
import uuid
import enum


class DerivationType(str, enum.Enum):
    """Where the ticket was handed off to."""
    TO_EMPLOYEE = "to_employee"
    TO_GENERAL_QUEUE = "to_general_queue"


class DerivationStatus(str, enum.Enum):
    """Status of the derivation record."""
    PENDING = "pending"  # Waiting in the target's personal queue
    ACCEPTED = "accepted"  # Target agent accepted it
    REJECTED = "rejected"  # Target agent rejected it
    AUTO_ASSIGNED = "auto_assigned"  # Placed without needing acceptance


class TicketDerivation(Base):
    """Ticket derivation model - audit trail of hand-offs."""
    __tablename__ = "ticket_derivations"

    # Primary Key
    id = Column(String, primary_key=True, default=lambda: f"drv_{uuid.uuid4().hex[:12]}")

    # References (no FK constraints: entities are written independently)
    ticket_id = Column(String, nullable=False, index=True)
    from_employee_id = Column(String, nullable=False, index=True)
    to_employee_id = Column(String, nullable=True, index=True)  # Absent for queue derivations

    # Derivation Details
    derivation_type = Column(SQLEnum(DerivationType), nullable=False)
    reason = Column(Text, nullable=True)
    comment = Column(Text, nullable=True)
    new_service_type = Column(String, nullable=True)
    status = Column(SQLEnum(DerivationStatus), default=DerivationStatus.PENDING, nullable=False, index=True)

    # Timestamps
    derived_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    accepted_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)

    def __repr__(self):
        target = self.to_employee_id or "general queue"
        return f"<TicketDerivation {self.id} - Ticket: {self.ticket_id} → {target} ({self.status.value})>"
