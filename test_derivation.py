"""Derivation workflows: hand-offs, recall, force-complete, accept/reject."""
import asyncio

import pytest

from dispatch.core.exceptions import (
    AgentBusy,
    AgentInactive,
    InvalidDerivationState,
    InvalidTicketState,
    NotFound,
    QueueFull,
    StoreUnavailable,
)
from dispatch.models.derivation import DerivationStatus, DerivationType
from dispatch.models.employee import AgentAvailability
from dispatch.models.schemas import DerivationOptions
from dispatch.models.ticket import QueueType, TicketPriority, TicketStatus
from dispatch.services.queue_ordering import general_queue, personal_queue


def test_derive_to_busy_agent_lands_in_personal_queue(open_desk, add_employee, serving, notifications):
    async def scenario():
        async with open_desk() as desk:
            a = await add_employee(desk, "A")
            b = await add_employee(desk, "B")
            ticket = await serving(desk, a)
            await serving(desk, b)

            outcome = await desk.derivation.derive_to_employee(
                ticket.id, a.id, b.id, DerivationOptions(reason="billing question", comment="urgent-ish")
            )
            return (
                outcome,
                await desk.tickets.get_by_id(ticket.id),
                await desk.employees.get_by_id(a.id),
                await desk.employees.get_by_id(b.id),
            )

    outcome, ticket, a, b = asyncio.run(scenario())

    assert outcome.immediate is False
    assert ticket.status == TicketStatus.WAITING
    assert ticket.queue_type == QueueType.PERSONAL
    assert ticket.assigned_to_employee == b.id
    assert ticket.served_by is None and ticket.served_at is None
    assert ticket.derived_from == a.id and ticket.derived_to == b.id
    assert ticket.derivation_reason == "billing question"
    assert ticket.derivation_comment == "urgent-ish"
    assert ticket.priority == TicketPriority.HIGH

    assert a.current_ticket_id is None
    assert a.is_active is False and a.is_paused is True
    assert b.current_ticket_id != ticket.id

    assert outcome.derivation.status == DerivationStatus.PENDING
    assert outcome.derivation.derivation_type == DerivationType.TO_EMPLOYEE
    assert ("info", f"New derived ticket: {ticket.display_number}", f"Ticket derived to {b.name}") in notifications.sent


def test_derive_to_idle_agent_is_served_immediately(open_desk, add_employee, serving):
    async def scenario():
        async with open_desk() as desk:
            a = await add_employee(desk, "A")
            c = await add_employee(desk, "C")
            ticket = await serving(desk, a, priority=TicketPriority.URGENT)

            outcome = await desk.derivation.derive_to_employee(
                ticket.id, a.id, c.id, DerivationOptions(new_service_type="claims")
            )
            audit = await desk.audit_log.list_for_ticket(ticket.id)
            return (
                outcome,
                await desk.tickets.get_by_id(ticket.id),
                await desk.employees.get_by_id(a.id),
                await desk.employees.get_by_id(c.id),
                audit,
            )

    outcome, ticket, a, c, audit = asyncio.run(scenario())

    assert outcome.immediate is True
    assert ticket.status == TicketStatus.BEING_SERVED
    assert ticket.served_by == c.id
    assert ticket.queue_type is None and ticket.assigned_to_employee is None
    assert ticket.service_type == "claims"
    assert ticket.priority == TicketPriority.URGENT
    assert c.current_ticket_id == ticket.id
    assert c.availability == AgentAvailability.ACTIVE
    assert a.current_ticket_id is None
    assert a.availability == AgentAvailability.INACTIVE
    assert outcome.derivation.status == DerivationStatus.AUTO_ASSIGNED

    assert [entry["action"] for entry in audit] == ["ticket_derived"]
    assert audit[0]["to_employee"] == c.name
    assert audit[0]["details"]["new_service_type"] == "claims"


def test_derive_to_paused_agent_waits_in_their_queue(open_desk, add_employee, serving):
    async def scenario():
        async with open_desk() as desk:
            a = await add_employee(desk, "A")
            p = await add_employee(desk, "P", AgentAvailability.PAUSED)
            ticket = await serving(desk, a)
            outcome = await desk.derivation.derive_to_employee(
                ticket.id, a.id, p.id, DerivationOptions(priority=TicketPriority.NORMAL)
            )
            return outcome, await desk.employees.get_by_id(p.id)

    outcome, p = asyncio.run(scenario())

    assert outcome.immediate is False
    assert outcome.ticket.assigned_to_employee == p.id
    assert outcome.ticket.priority == TicketPriority.NORMAL
    assert p.current_ticket_id is None


def test_rejected_derivation_writes_nothing(open_desk, add_employee, serving, notifications):
    async def scenario():
        async with open_desk() as desk:
            a = await add_employee(desk, "A")
            off = await add_employee(desk, "Off", AgentAvailability.INACTIVE)
            full = await add_employee(desk, "Full", max_personal_queue_size=1)
            ticket = await serving(desk, a)
            queued = await desk.tickets.create_ticket("payments")
            await desk.tickets.update_ticket(queued.id, {
                "queue_type": QueueType.PERSONAL,
                "assigned_to_employee": full.id,
            })

            with pytest.raises(AgentInactive):
                await desk.derivation.derive_to_employee(ticket.id, a.id, off.id)
            with pytest.raises(QueueFull):
                await desk.derivation.derive_to_employee(ticket.id, a.id, full.id)
            with pytest.raises(InvalidTicketState):
                await desk.derivation.derive_to_employee(ticket.id, a.id, a.id)
            with pytest.raises(InvalidTicketState):
                await desk.derivation.derive_to_employee(queued.id, a.id, a.id)
            with pytest.raises(NotFound):
                await desk.derivation.derive_to_employee(ticket.id, a.id, "emp_missing")

            return (
                ticket,
                await desk.tickets.get_by_id(ticket.id),
                await desk.employees.get_by_id(a.id),
                await desk.derivations.list_all(),
            )

    before, after, a, derivations = asyncio.run(scenario())

    assert after == before
    assert a.current_ticket_id == before.id
    assert derivations == []
    assert notifications.kinds().count("error") == 5


def test_inactive_but_free_target_is_rejected_not_assigned(open_desk, add_employee, serving):
    async def scenario():
        async with open_desk() as desk:
            a = await add_employee(desk, "A")
            off = await add_employee(desk, "Off", AgentAvailability.INACTIVE)
            ticket = await serving(desk, a)
            with pytest.raises(AgentInactive):
                await desk.derivation.derive_to_employee(ticket.id, a.id, off.id)
            return await desk.employees.get_by_id(off.id)

    assert asyncio.run(scenario()).current_ticket_id is None


def test_derive_to_general_queue_round_trip(open_desk, add_employee, serving, notifications):
    async def scenario():
        async with open_desk() as desk:
            a = await add_employee(desk, "A")
            await add_employee(desk, "Idle")
            ticket = await serving(desk, a, priority=TicketPriority.HIGH)
            outcome = await desk.derivation.derive_to_general_queue(
                ticket.id, a.id, DerivationOptions(reason="wrong counter")
            )
            return outcome, await desk.tickets.get_all_tickets(), await desk.employees.get_by_id(a.id)

    outcome, tickets, a = asyncio.run(scenario())

    queue = general_queue(tickets)
    assert [t.id for t in queue] == [outcome.ticket.id]
    assert outcome.ticket.priority == TicketPriority.NORMAL
    assert outcome.ticket.derived_from == a.id
    assert outcome.ticket.derived_to is None
    assert outcome.ticket.served_by is None
    assert a.current_ticket_id is None and a.availability == AgentAvailability.INACTIVE
    assert outcome.derivation.derivation_type == DerivationType.TO_GENERAL_QUEUE
    assert outcome.derivation.to_employee_id is None
    assert outcome.derivation.status == DerivationStatus.AUTO_ASSIGNED
    assert notifications.sent[-1][1] == f"Ticket returned to general queue: {outcome.ticket.display_number}"


def test_derive_waiting_ticket_to_queue_is_invalid(open_desk, add_employee):
    async def scenario():
        async with open_desk() as desk:
            a = await add_employee(desk, "A", AgentAvailability.INACTIVE)
            ticket = await desk.tickets.create_ticket("payments")
            with pytest.raises(InvalidTicketState):
                await desk.derivation.derive_to_general_queue(ticket.id, a.id)
            with pytest.raises(NotFound):
                await desk.derivation.derive_to_general_queue("tkt_missing", a.id)

    asyncio.run(scenario())


def test_later_derivation_goes_to_tail_of_personal_queue(open_desk, add_employee, serving, clock):
    async def scenario():
        async with open_desk() as desk:
            a = await add_employee(desk, "A")
            b = await add_employee(desk, "B")
            c = await add_employee(desk, "C")
            first = await serving(desk, a)
            await serving(desk, b)
            second = await serving(desk, c)

            await desk.derivation.derive_to_employee(first.id, a.id, b.id)
            clock.advance(10)
            await desk.derivation.derive_to_employee(second.id, c.id, b.id)
            return first, second, personal_queue(await desk.tickets.get_all_tickets(), b.id)

    first, second, queue = asyncio.run(scenario())

    assert [t.id for t in queue] == [first.id, second.id]


def test_failure_mid_saga_keeps_committed_steps_and_reraises(open_desk, add_employee, serving, notifications):
    async def scenario():
        async with open_desk() as desk:
            a = await add_employee(desk, "A")
            c = await add_employee(desk, "C")
            ticket = await serving(desk, a)

            async def broken_record(**fields):
                raise StoreUnavailable("derivations store unavailable")

            desk.derivations.create_derivation = broken_record
            with pytest.raises(StoreUnavailable):
                await desk.derivation.derive_to_employee(ticket.id, a.id, c.id)
            return (
                await desk.tickets.get_by_id(ticket.id),
                await desk.employees.get_by_id(a.id),
                await desk.employees.get_by_id(c.id),
            )

    ticket, a, c = asyncio.run(scenario())

    # Ticket, source and target writes all landed before the record failed
    assert ticket.served_by == c.id
    assert a.current_ticket_id is None
    assert c.current_ticket_id == ticket.id
    assert notifications.sent[-1][0] == "error"


def test_audit_failure_does_not_fail_derivation(open_desk, add_employee, serving):
    async def scenario():
        async with open_desk() as desk:
            a = await add_employee(desk, "A")
            c = await add_employee(desk, "C")
            ticket = await serving(desk, a)

            async def broken_append(**fields):
                raise StoreUnavailable("audit store unavailable")

            desk.audit_log.append = broken_append
            return await desk.derivation.derive_to_employee(ticket.id, a.id, c.id)

    assert asyncio.run(scenario()).immediate is True


def test_force_complete_without_serving_agent(open_desk, add_employee):
    employee_changes = []

    async def scenario():
        async with open_desk() as desk:
            bystander = await add_employee(desk, "A", AgentAvailability.INACTIVE)
            ticket = await desk.tickets.create_ticket("payments")
            await desk.tickets.update_ticket(ticket.id, {"status": TicketStatus.BEING_SERVED, "queue_type": None})
            desk.employees.subscribe(employee_changes.append)
            completed = await desk.derivation.force_complete(ticket.id)
            return completed, bystander, await desk.employees.get_by_id(bystander.id)

    completed, before, after = asyncio.run(scenario())

    assert completed.status == TicketStatus.COMPLETED
    assert completed.service_time == 0
    assert completed.completed_at is not None
    assert completed.cancellation_reason == "completed by administration"
    assert employee_changes == []
    assert after == before


def test_force_complete_frees_and_pauses_serving_agent(open_desk, add_employee, serving, clock):
    async def scenario():
        async with open_desk() as desk:
            a = await add_employee(desk, "A")
            ticket = await serving(desk, a)
            clock.advance(90)
            completed = await desk.derivation.force_complete(ticket.id)
            with pytest.raises(InvalidTicketState):
                await desk.derivation.force_complete(ticket.id)
            return completed, await desk.employees.get_by_id(a.id), await desk.audit_log.list_for_ticket(ticket.id)

    completed, a, audit = asyncio.run(scenario())

    assert completed.service_time == 90
    assert completed.total_time == 95
    assert a.current_ticket_id is None
    assert a.total_tickets_served == 1
    assert a.availability == AgentAvailability.PAUSED
    assert audit[-1]["details"]["by_administration"] is True


def test_force_complete_waiting_ticket(open_desk):
    async def scenario():
        async with open_desk() as desk:
            ticket = await desk.tickets.create_ticket("payments")
            return await desk.derivation.force_complete(ticket.id)

    completed = asyncio.run(scenario())

    assert completed.status == TicketStatus.COMPLETED
    assert completed.queue_type is None


def test_recall_finished_ticket(open_desk, add_employee, serving, clock):
    async def scenario():
        async with open_desk() as desk:
            a = await add_employee(desk, "A")
            b = await add_employee(desk, "B")
            c = await add_employee(desk, "C")
            ticket = await serving(desk, a)
            await desk.lifecycle.complete_ticket(a.id)
            await serving(desk, c)
            clock.advance(60)

            with pytest.raises(AgentBusy):
                await desk.derivation.recall_ticket(c.id, ticket.id)
            recalled = await desk.derivation.recall_ticket(b.id, ticket.id)
            waiting = await desk.tickets.create_ticket("payments")
            with pytest.raises(InvalidTicketState):
                await desk.derivation.recall_ticket(a.id, waiting.id)
            return recalled, await desk.employees.get_by_id(b.id)

    recalled, b = asyncio.run(scenario())

    assert recalled.status == TicketStatus.BEING_SERVED
    assert recalled.served_by == b.id
    assert recalled.completed_at is None
    assert b.current_ticket_id == recalled.id
    assert b.availability == AgentAvailability.ACTIVE


def test_accept_and_reject_only_pending_derivations(open_desk, add_employee, serving):
    async def scenario():
        async with open_desk() as desk:
            a = await add_employee(desk, "A")
            b = await add_employee(desk, "B")
            c = await add_employee(desk, "C")
            first = await serving(desk, a)
            await serving(desk, b)
            second = await serving(desk, c)

            pending_one = await desk.derivation.derive_to_employee(first.id, a.id, b.id)
            pending_two = await desk.derivation.derive_to_employee(second.id, c.id, b.id)
            listed = await desk.derivations.list_pending_for_agent(b.id)

            accepted = await desk.derivation.accept_derivation(pending_one.derivation.id)
            rejected = await desk.derivation.reject_derivation(pending_two.derivation.id)
            with pytest.raises(InvalidDerivationState):
                await desk.derivation.accept_derivation(pending_one.derivation.id)
            with pytest.raises(NotFound):
                await desk.derivation.reject_derivation("drv_missing")
            return listed, accepted, rejected, await desk.derivations.list_pending_for_agent(b.id)

    listed, accepted, rejected, remaining = asyncio.run(scenario())

    assert len(listed) == 2
    assert accepted.status == DerivationStatus.ACCEPTED and accepted.accepted_at is not None
    assert rejected.status == DerivationStatus.REJECTED and rejected.rejected_at is not None
    assert remaining == []


def test_derivation_from_agent_not_serving_the_ticket_is_rejected(open_desk, add_employee, serving, notifications):
    async def scenario():
        async with open_desk() as desk:
            a = await add_employee(desk, "A")
            x = await add_employee(desk, "X")
            ticket = await serving(desk, a)
            c = await add_employee(desk, "C")

            with pytest.raises(InvalidTicketState):
                await desk.derivation.derive_to_employee(ticket.id, x.id, c.id)
            with pytest.raises(InvalidTicketState):
                await desk.derivation.derive_to_general_queue(ticket.id, x.id)

            return (
                ticket,
                await desk.tickets.get_by_id(ticket.id),
                await desk.employees.get_by_id(a.id),
                await desk.employees.get_by_id(x.id),
                await desk.employees.get_by_id(c.id),
                await desk.derivations.list_all(),
            )

    before, after, a, x, c, derivations = asyncio.run(scenario())

    assert after == before
    assert a.current_ticket_id == before.id
    assert x.current_ticket_id is None and x.availability == AgentAvailability.ACTIVE
    assert c.current_ticket_id is None
    assert derivations == []
    assert notifications.kinds().count("error") == 2


def test_admin_derivation_of_served_ticket_pauses_serving_agent(open_desk, add_employee, serving):
    async def scenario():
        async with open_desk() as desk:
            a = await add_employee(desk, "A")
            b = await add_employee(desk, "B")
            ticket = await serving(desk, a)
            await serving(desk, b)

            outcome = await desk.derivation.admin_derive_to_employee(ticket.id, b.id)
            audit = await desk.audit_log.list_for_ticket(ticket.id)
            return outcome, await desk.employees.get_by_id(a.id), b, audit

    outcome, a, b, audit = asyncio.run(scenario())

    assert outcome.immediate is False
    assert outcome.ticket.assigned_to_employee == b.id
    assert outcome.ticket.derived_from == a.id
    assert outcome.ticket.priority == TicketPriority.HIGH
    assert outcome.ticket.derivation_reason == "administrative derivation"
    assert outcome.derivation.from_employee_id == a.id
    assert outcome.derivation.status == DerivationStatus.PENDING
    assert a.current_ticket_id is None
    assert a.availability == AgentAvailability.PAUSED
    assert audit[0]["from_employee"] == a.name
    assert audit[0]["to_employee"] == b.name


def test_admin_derivation_of_waiting_ticket_to_idle_agent(open_desk, add_employee):
    async def scenario():
        async with open_desk() as desk:
            ticket = await desk.tickets.create_ticket("payments")
            c = await add_employee(desk, "C")
            outcome = await desk.derivation.admin_derive_to_employee(
                ticket.id, c.id, DerivationOptions(reason="VIP customer", priority=TicketPriority.URGENT)
            )
            audit = await desk.audit_log.list_for_ticket(ticket.id)
            return outcome, await desk.employees.get_by_id(c.id), audit

    outcome, c, audit = asyncio.run(scenario())

    assert outcome.immediate is True
    assert outcome.ticket.status == TicketStatus.BEING_SERVED
    assert outcome.ticket.served_by == c.id
    assert outcome.ticket.derived_from == "admin"
    assert outcome.ticket.derivation_reason == "VIP customer"
    assert outcome.ticket.priority == TicketPriority.URGENT
    assert outcome.derivation.from_employee_id == "admin"
    assert c.current_ticket_id == outcome.ticket.id
    assert audit[0]["from_employee"] == "Administration"
    assert audit[0]["employee_id"] is None


def test_admin_derivation_to_general_queue(open_desk, add_employee, serving):
    async def scenario():
        async with open_desk() as desk:
            a = await add_employee(desk, "A")
            ticket = await serving(desk, a, priority=TicketPriority.URGENT)
            served = await desk.derivation.admin_derive_to_general_queue(ticket.id)

            waiting = await desk.tickets.create_ticket("claims")
            unserved = await desk.derivation.admin_derive_to_general_queue(waiting.id)
            return served, unserved, await desk.employees.get_by_id(a.id), await desk.tickets.get_all_tickets()

    served, unserved, a, tickets = asyncio.run(scenario())

    assert served.ticket.status == TicketStatus.WAITING
    assert served.ticket.queue_type == QueueType.GENERAL
    assert served.ticket.served_by is None and served.ticket.served_at is None
    assert served.ticket.priority == TicketPriority.URGENT
    assert served.ticket.derived_from == a.id
    assert served.ticket.derivation_reason == "administrative derivation"
    assert served.derivation.derivation_type == DerivationType.TO_GENERAL_QUEUE
    assert a.current_ticket_id is None
    assert a.availability == AgentAvailability.PAUSED

    assert unserved.ticket.derived_from == "admin"
    assert unserved.derivation.from_employee_id == "admin"
    assert [t.id for t in general_queue(tickets)] == [served.ticket.id, unserved.ticket.id]


def test_admin_derivation_rejects_finished_tickets_and_missing_targets(open_desk, add_employee, serving):
    async def scenario():
        async with open_desk() as desk:
            a = await add_employee(desk, "A")
            off = await add_employee(desk, "Off", AgentAvailability.INACTIVE)
            ticket = await serving(desk, a)
            with pytest.raises(InvalidTicketState):
                await desk.derivation.admin_derive_to_employee(ticket.id, a.id)
            with pytest.raises(AgentInactive):
                await desk.derivation.admin_derive_to_employee(ticket.id, off.id)
            with pytest.raises(NotFound):
                await desk.derivation.admin_derive_to_employee(ticket.id, "emp_missing")

            await desk.derivation.force_complete(ticket.id)
            with pytest.raises(InvalidTicketState):
                await desk.derivation.admin_derive_to_general_queue(ticket.id)
            with pytest.raises(NotFound):
                await desk.derivation.admin_derive_to_general_queue("tkt_missing")
            return await desk.derivations.list_all()

    assert asyncio.run(scenario()) == []
