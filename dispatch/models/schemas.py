"""
Pydantic schemas.

Snapshot schemas are frozen: every workflow reads one immutable view of a
ticket or employee and writes changes back through the stores.
"""
from pydantic import BaseModel, Field, computed_field, field_validator
from datetime import datetime
from typing import Optional, List
from dispatch.models.ticket import TicketStatus, TicketPriority, QueueType
from dispatch.models.employee import AgentAvailability
from dispatch.models.derivation import DerivationType, DerivationStatus


class TicketSchema(BaseModel):
    """Ticket snapshot."""
    id: str
    number: int
    service_type: str
    service_subtype: Optional[str] = None
    priority: TicketPriority = TicketPriority.NORMAL
    status: TicketStatus = TicketStatus.WAITING

    queue_type: Optional[QueueType] = None
    assigned_to_employee: Optional[str] = None

    served_by: Optional[str] = None
    served_at: Optional[datetime] = None

    derived_from: Optional[str] = None
    derived_to: Optional[str] = None
    derived_at: Optional[datetime] = None
    derivation_reason: Optional[str] = None
    derivation_comment: Optional[str] = None

    created_at: datetime
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    wait_time: Optional[int] = None
    service_time: Optional[int] = None
    total_time: Optional[int] = None

    cancellation_reason: Optional[str] = None
    cancellation_comment: Optional[str] = None
    cancelled_by: Optional[str] = None

    @field_validator("priority", mode="before")
    @classmethod
    def default_priority(cls, value):
        return value or TicketPriority.NORMAL

    @property
    def display_number(self) -> str:
        """Zero-padded number as printed and announced (#007)."""
        return f"#{self.number:03d}"

    class Config:
        from_attributes = True
        frozen = True


class EmployeeSchema(BaseModel):
    """Employee snapshot."""
    id: str
    name: str
    position: str = ""
    availability: AgentAvailability = AgentAvailability.ACTIVE
    current_ticket_id: Optional[str] = None
    total_tickets_served: int = 0
    total_tickets_cancelled: int = 0
    max_personal_queue_size: int = 10
    auto_process_personal_queue: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def is_active(self) -> bool:
        return self.availability.is_active

    @computed_field
    @property
    def is_paused(self) -> bool:
        return self.availability.is_paused

    @property
    def is_busy(self) -> bool:
        return self.current_ticket_id is not None

    class Config:
        from_attributes = True
        frozen = True


class DerivationSchema(BaseModel):
    """Derivation record snapshot."""
    id: str
    ticket_id: str
    from_employee_id: str
    to_employee_id: Optional[str] = None
    derivation_type: DerivationType
    reason: Optional[str] = None
    comment: Optional[str] = None
    new_service_type: Optional[str] = None
    status: DerivationStatus
    derived_at: datetime
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        frozen = True


class QueueStatsSchema(BaseModel):
    """Queue statistics for one agent."""
    personal_queue_count: int
    general_queue_count: int
    total_waiting_count: int
    next_ticket_type: str  # personal, general, none


# ========== Request Schemas ==========

class TicketCreateSchema(BaseModel):
    """Schema for printing a new ticket."""
    service_type: str = Field(..., min_length=1)
    service_subtype: Optional[str] = None
    priority: TicketPriority = TicketPriority.NORMAL


class EmployeeCreateSchema(BaseModel):
    """Schema for creating an employee (administrative)."""
    name: str = Field(..., min_length=1)
    position: str = ""
    availability: AgentAvailability = AgentAvailability.ACTIVE
    max_personal_queue_size: Optional[int] = Field(None, ge=1, le=50)
    auto_process_personal_queue: bool = True


class DerivationOptions(BaseModel):
    """Optional details attached to a derivation."""
    reason: Optional[str] = None
    comment: Optional[str] = None
    new_service_type: Optional[str] = None
    priority: Optional[TicketPriority] = None


class DeriveToEmployeeSchema(DerivationOptions):
    from_employee_id: str
    to_employee_id: str


class DeriveToQueueSchema(DerivationOptions):
    from_employee_id: str


class AdminDeriveToEmployeeSchema(DerivationOptions):
    """Source is taken from the ticket, not the caller."""
    to_employee_id: str


class CompleteTicketSchema(BaseModel):
    employee_id: str
    call_next: bool = False


class CancelTicketSchema(BaseModel):
    employee_id: str
    reason: str = Field(..., min_length=1)
    comment: Optional[str] = None


class EmployeeActionSchema(BaseModel):
    employee_id: str


class StartServiceSchema(BaseModel):
    employee_id: str
    ticket_id: Optional[str] = None


class InconsistencySchema(BaseModel):
    """One finding of the reconciliation report."""
    kind: str
    ticket_id: Optional[str] = None
    employee_id: Optional[str] = None
    detail: str


class ReconciliationReportSchema(BaseModel):
    checked_tickets: int
    checked_employees: int
    inconsistencies: List[InconsistencySchema]


class DerivationOutcomeSchema(BaseModel):
    """Result of a derivation: the record, the ticket as written, and which branch ran."""
    derivation: DerivationSchema
    ticket: TicketSchema
    immediate: bool


class CompletionOutcomeSchema(BaseModel):
    """Finished ticket and, with call-next, the ticket the agent took next."""
    ticket: TicketSchema
    employee: EmployeeSchema
    next_ticket: Optional[TicketSchema] = None
