"""
Safe Side Effects - Graceful Error Handling Utilities

Notification and audit hooks are best-effort: their failures are logged
with context and suppressed so they never fail the workflow that
triggered them.
"""
from typing import Any, Awaitable, Optional
import logging

logger = logging.getLogger(__name__)


class DataIntegrityLogger:
    """Log data integrity issues for monitoring and reconciliation."""

    @staticmethod
    def log_missing_employee(ticket_id: str, employee_id: Optional[str], role: str):
        """Log when a ticket references an employee that does not resolve."""
        logger.warning(
            f"Data integrity issue: Ticket {ticket_id} references missing {role} employee {employee_id}",
            extra={
                "ticket_id": ticket_id,
                "employee_id": employee_id,
                "role": role,
                "issue_type": "missing_employee_record",
                "severity": "medium"
            }
        )

    @staticmethod
    def log_missing_ticket(employee_id: str, ticket_id: str):
        """Log when an employee's current ticket does not resolve."""
        logger.warning(
            f"Data integrity issue: Employee {employee_id} points at missing ticket {ticket_id}",
            extra={
                "employee_id": employee_id,
                "ticket_id": ticket_id,
                "issue_type": "missing_ticket_record",
                "severity": "medium"
            }
        )

    @staticmethod
    def log_partial_workflow(workflow: str, ticket_id: str, completed_steps: list, error: Exception):
        """Log a multi-step workflow that aborted after committing some steps."""
        logger.error(
            f"Workflow {workflow} aborted for ticket {ticket_id} after steps {completed_steps}: {error}",
            extra={
                "workflow": workflow,
                "ticket_id": ticket_id,
                "completed_steps": completed_steps,
                "issue_type": "partial_workflow",
                "severity": "high"
            }
        )


async def run_side_effect(name: str, awaitable: Awaitable[Any], **context) -> bool:
    """
    Await a best-effort side effect.

    Args:
        name: Side effect label for the log
        awaitable: Coroutine to run
        context: Extra fields for the log record

    Returns:
        True if it completed, False if it failed (already logged)
    """
    try:
        await awaitable
        return True
    except Exception as e:
        logger.error(
            f"Side effect {name} failed: {e}",
            extra={"side_effect": name, **context},
            exc_info=True
        )
        return False
