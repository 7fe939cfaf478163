"""Queue ordering over ticket snapshots."""
import itertools
from datetime import timedelta

from conftest import BASE_TIME
from dispatch.models.ticket import QueueType, TicketPriority, TicketStatus
from dispatch.services.queue_ordering import general_queue, next_for_agent, personal_queue, queue_stats


def numbers(tickets):
    return [t.number for t in tickets]


def test_urgent_ticket_jumps_ahead_of_older_normal_ticket(make_ticket):
    seven = make_ticket(number=7, priority=TicketPriority.NORMAL, created_at=BASE_TIME)
    eight = make_ticket(number=8, priority=TicketPriority.URGENT, created_at=BASE_TIME + timedelta(seconds=5))

    assert numbers(general_queue([seven, eight])) == [8, 7]


def test_general_queue_orders_by_priority_then_age(make_ticket):
    tickets = [
        make_ticket(number=1, priority=TicketPriority.NORMAL),
        make_ticket(number=2, priority=TicketPriority.HIGH),
        make_ticket(number=3, priority=TicketPriority.NORMAL),
        make_ticket(number=4, priority=TicketPriority.URGENT),
        make_ticket(number=5, priority=TicketPriority.HIGH),
    ]

    assert numbers(general_queue(tickets)) == [4, 2, 5, 1, 3]


def test_general_queue_is_stable_under_permutation(make_ticket):
    same_instant = BASE_TIME + timedelta(minutes=1)
    tickets = [
        make_ticket(number=n, created_at=same_instant) for n in (3, 1, 2)
    ] + [make_ticket(number=4, priority=TicketPriority.HIGH)]

    orders = {tuple(numbers(general_queue(list(p)))) for p in itertools.permutations(tickets)}

    assert orders == {(4, 1, 2, 3)}


def test_general_queue_excludes_personal_served_and_finished_tickets(make_ticket):
    waiting = make_ticket()
    legacy_untyped = make_ticket(queue_type=None)
    personal = make_ticket(queue_type=QueueType.PERSONAL, assigned_to_employee="emp_1")
    served = make_ticket(status=TicketStatus.BEING_SERVED, queue_type=None, served_by="emp_1")
    done = make_ticket(status=TicketStatus.COMPLETED, queue_type=None)

    queue = general_queue([waiting, legacy_untyped, personal, served, done])

    assert [t.id for t in queue] == [waiting.id, legacy_untyped.id]


def test_personal_queue_only_contains_that_agents_tickets(make_ticket):
    mine = make_ticket(queue_type=QueueType.PERSONAL, assigned_to_employee="emp_1")
    theirs = make_ticket(queue_type=QueueType.PERSONAL, assigned_to_employee="emp_2")
    general = make_ticket()

    queue = personal_queue([mine, theirs, general], "emp_1")

    assert [t.id for t in queue] == [mine.id]
    assert all(t.assigned_to_employee == "emp_1" for t in queue)


def test_personal_queue_orders_by_derivation_time(make_ticket):
    # Printed first, derived last
    early_print = make_ticket(
        number=1,
        queue_type=QueueType.PERSONAL,
        assigned_to_employee="emp_1",
        derived_at=BASE_TIME + timedelta(minutes=30),
    )
    late_print = make_ticket(
        number=2,
        queue_type=QueueType.PERSONAL,
        assigned_to_employee="emp_1",
        derived_at=BASE_TIME + timedelta(minutes=10),
    )
    urgent = make_ticket(
        number=3,
        priority=TicketPriority.URGENT,
        queue_type=QueueType.PERSONAL,
        assigned_to_employee="emp_1",
        derived_at=BASE_TIME + timedelta(minutes=50),
    )

    assert numbers(personal_queue([early_print, late_print, urgent], "emp_1")) == [3, 2, 1]


def test_next_ticket_prefers_personal_queue_over_urgent_general(make_ticket):
    urgent_general = make_ticket(priority=TicketPriority.URGENT)
    personal = make_ticket(queue_type=QueueType.PERSONAL, assigned_to_employee="emp_1")

    assert next_for_agent([urgent_general, personal], "emp_1").id == personal.id
    assert next_for_agent([urgent_general, personal], "emp_2").id == urgent_general.id


def test_next_ticket_is_none_when_nothing_waits(make_ticket):
    served = make_ticket(status=TicketStatus.BEING_SERVED, served_by="emp_1")

    assert next_for_agent([served], "emp_1") is None
    assert next_for_agent([], "emp_1") is None


def test_queue_stats_report_next_ticket_source(make_ticket):
    general = make_ticket()
    personal = make_ticket(queue_type=QueueType.PERSONAL, assigned_to_employee="emp_1")

    stats = queue_stats([general, personal], "emp_1")
    assert stats.personal_queue_count == 1
    assert stats.general_queue_count == 1
    assert stats.total_waiting_count == 2
    assert stats.next_ticket_type == "personal"

    assert queue_stats([general], "emp_1").next_ticket_type == "general"
    assert queue_stats([], "emp_1").next_ticket_type == "none"
