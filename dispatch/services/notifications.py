"""
Notification Service

Decides that a notification happened and what it says. Delivery is
best-effort: always logged, and POSTed to a webhook when one is
configured. Failures never propagate.
"""
import logging
import httpx
from typing import Optional
from dispatch.core.config import settings
from dispatch.models.schemas import DerivationSchema, EmployeeSchema, TicketSchema

logger = logging.getLogger(__name__)

NOTIFICATION_KINDS = ("info", "success", "error")


class NotificationService:
    """Notification sink for dispatch events."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: Optional[float] = None):
        """Initialize notification service."""
        self.webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self.timeout = timeout or settings.notification_timeout

    async def notify(self, kind: str, title: str, body: str) -> bool:
        """
        Emit a notification.

        Args:
            kind: info, success or error
            title: Short headline
            body: Message text

        Returns:
            True if delivered (or only logged), False if webhook delivery failed
        """
        if kind not in NOTIFICATION_KINDS:
            kind = "info"

        log = logger.error if kind == "error" else logger.info
        log(f"{kind.upper()}: {title} - {body}")

        if not self.webhook_url:
            return True

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.webhook_url,
                    json={"kind": kind, "title": title, "body": body},
                    headers={"Content-Type": "application/json"}
                )
                if response.status_code >= 400:
                    logger.error(
                        "Notification webhook rejected notification",
                        extra={"status_code": response.status_code, "response_body": response.text}
                    )
                    return False
                return True
        except Exception as e:
            logger.error(f"Error delivering notification '{title}': {e}", exc_info=True)
            return False

    async def derivation_notification(
        self,
        derivation: DerivationSchema,
        ticket: TicketSchema,
        target_employee: Optional[EmployeeSchema] = None,
    ) -> bool:
        if derivation.to_employee_id and target_employee:
            return await self.notify(
                "info",
                f"New derived ticket: {ticket.display_number}",
                f"Ticket derived to {target_employee.name}",
            )
        return await self.notify(
            "info",
            f"Ticket returned to general queue: {ticket.display_number}",
            "The ticket is available for any employee",
        )

    async def error_notification(self, message: str) -> bool:
        return await self.notify("error", "Derivation failed", message)


# Global notification service instance
notification_service = NotificationService()
