"""
Audit Log Model
"""
from sqlalchemy import Column, String, DateTime, JSON
from dispatch.models.database import Base
from dispatch.utils.clock import utcnow
import uuid


class AuditLog(Base):
    """Append-only audit entry."""
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=lambda: f"audit_{uuid.uuid4().hex[:12]}")
    action = Column(String, nullable=False, index=True)  # ticket_derived, ticket_completed, employee_<action>
    ticket_id = Column(String, nullable=True, index=True)
    employee_id = Column(String, nullable=True, index=True)
    from_employee = Column(String, nullable=True)
    to_employee = Column(String, nullable=True)
    details = Column(JSON, default=dict, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def to_dict(self):
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "action": self.action,
            "ticket_id": self.ticket_id,
            "employee_id": self.employee_id,
            "from_employee": self.from_employee,
            "to_employee": self.to_employee,
            "details": self.details,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
