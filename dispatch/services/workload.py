"""
Workload Scoring

Ranks agents for new assignments. Lower score = more available.

Score components:
- Busy (has a current ticket):     +100
- Personal queue:                  +10 per waiting ticket
- Historical throughput:           +1 per 10 tickets served (spreads load)
- Not opted in (inactive):         +2000
- Paused:                          +1000

An agent is available for immediate assignment only while the score stays
under the busy threshold (100): any of busy, paused or inactive alone
crosses it.
"""
from typing import Iterable

from dispatch.core.config import settings
from dispatch.models.schemas import EmployeeSchema, TicketSchema
from dispatch.services.queue_ordering import personal_queue

BUSY_PENALTY = 100
QUEUE_PENALTY_PER_TICKET = 10
SERVED_PER_PENALTY_POINT = 10
INACTIVE_PENALTY = 2000
PAUSED_PENALTY = 1000


def workload_score(employee: EmployeeSchema, tickets: Iterable[TicketSchema]) -> int:
    """Compute the non-negative workload score of one agent against a ticket snapshot."""
    score = 0
    if employee.current_ticket_id:
        score += BUSY_PENALTY
    score += QUEUE_PENALTY_PER_TICKET * len(personal_queue(tickets, employee.id))
    score += max(0, employee.total_tickets_served) // SERVED_PER_PENALTY_POINT
    if not employee.is_active:
        score += INACTIVE_PENALTY
    if employee.is_paused:
        score += PAUSED_PENALTY
    return score


def is_available_for_assignment(score: int) -> bool:
    return score < settings.busy_threshold
