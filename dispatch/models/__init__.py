"""Database models and schemas."""
from dispatch.models.database import Base, init_db, init_engine, create_engine_and_sessions, create_tables
from dispatch.models.ticket import Ticket, TicketStatus, TicketPriority, QueueType
from dispatch.models.employee import Employee, AgentAvailability
from dispatch.models.derivation import TicketDerivation, DerivationType, DerivationStatus
from dispatch.models.audit import AuditLog
from dispatch.models.schemas import (
    TicketSchema,
    EmployeeSchema,
    DerivationSchema,
    DerivationOptions,
    QueueStatsSchema,
)

__all__ = [
    "Base",
    "init_db",
    "init_engine",
    "create_engine_and_sessions",
    "create_tables",
    "Ticket",
    "TicketStatus",
    "TicketPriority",
    "QueueType",
    "Employee",
    "AgentAvailability",
    "TicketDerivation",
    "DerivationType",
    "DerivationStatus",
    "AuditLog",
    "TicketSchema",
    "EmployeeSchema",
    "DerivationSchema",
    "DerivationOptions",
    "QueueStatsSchema",
]
