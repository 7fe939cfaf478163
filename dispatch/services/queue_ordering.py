"""
Queue Ordering

Pure functions over a ticket snapshot. Queue positions are always
recomputed from here, never stored.

Ordering is total and deterministic: priority (urgent > high > normal),
then time ascending, then the ticket's printed number and id as final
tie-breakers, so concurrent callers computing the same queue agree on
the next ticket.
"""
from typing import Iterable, List, Optional

from dispatch.models.schemas import TicketSchema, QueueStatsSchema
from dispatch.models.ticket import TicketStatus, QueueType


def _general_key(ticket: TicketSchema):
    return (-ticket.priority.rank, ticket.created_at, ticket.number, ticket.id)


def _personal_key(ticket: TicketSchema):
    return (-ticket.priority.rank, ticket.derived_at or ticket.created_at, ticket.number, ticket.id)


def is_in_general_queue(ticket: TicketSchema) -> bool:
    return (
        ticket.status == TicketStatus.WAITING
        and ticket.queue_type in (None, QueueType.GENERAL)
        and not ticket.assigned_to_employee
    )


def is_in_personal_queue(ticket: TicketSchema, employee_id: str) -> bool:
    return (
        ticket.status == TicketStatus.WAITING
        and ticket.queue_type == QueueType.PERSONAL
        and ticket.assigned_to_employee == employee_id
    )


def general_queue(tickets: Iterable[TicketSchema]) -> List[TicketSchema]:
    """Waiting tickets not tied to any agent, highest priority then oldest first."""
    return sorted((t for t in tickets if is_in_general_queue(t)), key=_general_key)


def personal_queue(tickets: Iterable[TicketSchema], employee_id: str) -> List[TicketSchema]:
    """Waiting tickets derived to one agent, ordered by priority then derivation time."""
    return sorted((t for t in tickets if is_in_personal_queue(t, employee_id)), key=_personal_key)


def next_for_agent(tickets: Iterable[TicketSchema], employee_id: str) -> Optional[TicketSchema]:
    """
    Next ticket an agent should take.

    The personal queue always wins over the general queue, whatever the
    priorities in each list.
    """
    tickets = list(tickets)
    personal = personal_queue(tickets, employee_id)
    if personal:
        return personal[0]
    general = general_queue(tickets)
    if general:
        return general[0]
    return None


def queue_stats(tickets: Iterable[TicketSchema], employee_id: str) -> QueueStatsSchema:
    tickets = list(tickets)
    personal_count = len(personal_queue(tickets, employee_id))
    general_count = len(general_queue(tickets))

    if personal_count:
        next_type = "personal"
    elif general_count:
        next_type = "general"
    else:
        next_type = "none"

    return QueueStatsSchema(
        personal_queue_count=personal_count,
        general_queue_count=general_count,
        total_waiting_count=personal_count + general_count,
        next_ticket_type=next_type,
    )
