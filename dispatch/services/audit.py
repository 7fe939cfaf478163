"""
Audit Service
Records derivations, completions and employee state changes. Best-effort and append-only.
"""
import logging
from typing import Any, Dict, Optional

from dispatch.models.schemas import DerivationSchema, EmployeeSchema, TicketSchema
from dispatch.services.stores import AuditStore

logger = logging.getLogger(__name__)

GENERAL_QUEUE_LABEL = "General queue"
ADMINISTRATION_LABEL = "Administration"


class AuditService:
    """Writes audit entries; never raises."""

    def __init__(self, store: AuditStore):
        self.store = store

    async def log_derivation(
        self,
        derivation: DerivationSchema,
        ticket: TicketSchema,
        from_employee: Optional[EmployeeSchema],
        to_employee: Optional[EmployeeSchema] = None,
    ) -> Optional[dict]:
        try:
            entry = await self.store.append(
                action="ticket_derived",
                ticket_id=derivation.ticket_id,
                employee_id=from_employee.id if from_employee else None,
                from_employee=from_employee.name if from_employee else ADMINISTRATION_LABEL,
                to_employee=to_employee.name if to_employee else GENERAL_QUEUE_LABEL,
                details={
                    "ticket_number": ticket.number,
                    "derivation_id": derivation.id,
                    "derivation_type": derivation.derivation_type.value,
                    "reason": derivation.reason,
                    "comment": derivation.comment,
                    "new_service_type": derivation.new_service_type,
                    "priority": ticket.priority.value,
                    "original_service_type": ticket.service_type,
                },
            )
            logger.info(f"Derivation logged: ticket {ticket.display_number} ({derivation.derivation_type.value})")
            return entry
        except Exception as e:
            logger.error(f"Error logging derivation {derivation.id}: {e}", exc_info=True)
            return None

    async def log_ticket_completion(
        self,
        ticket: TicketSchema,
        employee: Optional[EmployeeSchema],
        by_administration: bool = False,
    ) -> Optional[dict]:
        try:
            return await self.store.append(
                action="ticket_completed",
                ticket_id=ticket.id,
                employee_id=employee.id if employee else None,
                from_employee=employee.name if employee else None,
                details={
                    "ticket_number": ticket.number,
                    "service_type": ticket.service_type,
                    "service_time": ticket.service_time,
                    "total_time": ticket.total_time,
                    "was_derived": bool(ticket.derived_from),
                    "by_administration": by_administration,
                },
            )
        except Exception as e:
            logger.error(f"Error logging ticket completion {ticket.id}: {e}", exc_info=True)
            return None

    async def log_ticket_cancellation(
        self,
        ticket: TicketSchema,
        employee: EmployeeSchema,
    ) -> Optional[dict]:
        try:
            return await self.store.append(
                action="ticket_cancelled",
                ticket_id=ticket.id,
                employee_id=employee.id,
                from_employee=employee.name,
                details={
                    "ticket_number": ticket.number,
                    "reason": ticket.cancellation_reason,
                    "comment": ticket.cancellation_comment,
                    "total_time": ticket.total_time,
                },
            )
        except Exception as e:
            logger.error(f"Error logging ticket cancellation {ticket.id}: {e}", exc_info=True)
            return None

    async def log_employee_state_change(
        self,
        employee: EmployeeSchema,
        action: str,
        details: Dict[str, Any],
    ) -> Optional[dict]:
        try:
            return await self.store.append(
                action=f"employee_{action}",
                employee_id=employee.id,
                from_employee=employee.name,
                details=details,
            )
        except Exception as e:
            logger.error(f"Error logging employee state change for {employee.id}: {e}", exc_info=True)
            return None
