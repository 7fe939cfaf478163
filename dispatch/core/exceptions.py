"""
Dispatch error taxonomy.

Every core operation raises one of these instead of returning a silent
failure. The HTTP layer maps them to status codes in one place.
"""
from typing import Optional


class DispatchError(Exception):
    """Base class for all dispatch failures."""

    code = "dispatch_error"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, **self.context}


class NotFound(DispatchError):
    """A ticket, employee or derivation id does not resolve."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: Optional[str]):
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)


class InvalidTicketState(DispatchError):
    """Action attempted from a status that does not allow it."""

    code = "invalid_ticket_state"


class InvalidDerivationState(InvalidTicketState):
    """Accept/reject attempted on a derivation that is no longer pending."""

    code = "invalid_derivation_state"


class AgentInactive(DispatchError):
    code = "agent_inactive"


class QueueFull(DispatchError):
    code = "queue_full"


class AgentBusy(DispatchError):
    """The agent already holds a current ticket."""

    code = "agent_busy"


class StoreUnavailable(DispatchError):
    """Storage I/O failed. Callers may retry; nothing is rolled back."""

    code = "store_unavailable"
