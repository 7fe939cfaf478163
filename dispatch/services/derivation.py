"""
Derivation Orchestrator

Hands a ticket off mid-service, to another agent or back to the general
queue, plus the manual recall and the administrative edges: derivation
of any open ticket and force-complete.

There are no cross-entity transactions, so each workflow is an ordered
saga of single-entity writes:

    1. validate (fresh reads)
    2. re-read the entities about to be written
    3. ticket transition
    4. free the source agent
    5. target agent takes the ticket (immediate case only)
    6. derivation record
    7. notification + audit (best-effort)

A failure in steps 3-6 aborts the saga and leaves committed steps in
place; the partial workflow is logged so a reconciliation pass can find
it, an error notification is emitted, and the error is re-raised.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from dispatch.core.exceptions import AgentBusy, InvalidDerivationState, InvalidTicketState, NotFound
from dispatch.models.derivation import DerivationStatus, DerivationType
from dispatch.models.employee import AgentAvailability
from dispatch.models.schemas import (
    DerivationOptions,
    DerivationOutcomeSchema,
    DerivationSchema,
    EmployeeSchema,
    TicketSchema,
)
from dispatch.models.ticket import QueueType, TicketPriority, TicketStatus
from dispatch.services.audit import AuditService
from dispatch.services.notifications import NotificationService
from dispatch.services.stores import DerivationStore, EmployeeStore, TicketStore
from dispatch.services.validation import ValidationService
from dispatch.utils.clock import seconds_between, utcnow
from dispatch.utils.safe_accessors import DataIntegrityLogger, run_side_effect

logger = logging.getLogger(__name__)

ADMINISTRATIVE_COMPLETION_REASON = "completed by administration"
ADMINISTRATIVE_DERIVATION_REASON = "administrative derivation"
ADMIN_SOURCE = "admin"


def can_take_immediately(target: EmployeeSchema) -> bool:
    """Target gets the ticket now only when free and active (not paused)."""
    return target.current_ticket_id is None and target.availability == AgentAvailability.ACTIVE


class DerivationOrchestrator:
    """Ticket hand-off workflows."""

    def __init__(
        self,
        tickets: TicketStore,
        employees: EmployeeStore,
        derivations: DerivationStore,
        validation: ValidationService,
        notifications: NotificationService,
        audit: AuditService,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.tickets = tickets
        self.employees = employees
        self.derivations = derivations
        self.validation = validation
        self.notifications = notifications
        self.audit = audit
        self.clock = clock

    async def _fail(self, workflow: str, ticket_id: str, completed_steps: List[str], error: Exception):
        """Record an aborted saga; the caller re-raises."""
        if completed_steps:
            DataIntegrityLogger.log_partial_workflow(workflow, ticket_id, completed_steps, error)
        else:
            logger.warning(f"{workflow} failed for ticket {ticket_id}: {error}")
        await run_side_effect(
            "error_notification",
            self.notifications.error_notification(str(error)),
            ticket_id=ticket_id,
        )

    async def _free_source(
        self,
        source: EmployeeSchema,
        ticket_id: str,
        availability: AgentAvailability = AgentAvailability.INACTIVE,
    ) -> EmployeeSchema:
        """Source agent drops the derived ticket; regular hand-offs stop them receiving tickets."""
        fields = {"availability": availability}
        if source.current_ticket_id == ticket_id:
            fields["current_ticket_id"] = None
        elif source.current_ticket_id:
            # Serving something else; only the derived ticket may be cleared
            logger.warning(
                f"Source agent {source.name} holds {source.current_ticket_id}, not {ticket_id}; "
                f"current ticket left untouched"
            )
            fields = {}
        if not fields:
            return source
        freed = await self.employees.update_employee(source.id, fields)
        logger.info(f"Source agent {source.name} freed after derivation")
        return freed

    async def _serving_agent(self, ticket: TicketSchema) -> Optional[EmployeeSchema]:
        if not ticket.served_by:
            return None
        agent = await self.employees.get_by_id(ticket.served_by)
        if agent is None:
            DataIntegrityLogger.log_missing_employee(ticket.id, ticket.served_by, "served_by")
        return agent

    async def _announce(
        self,
        derivation: DerivationSchema,
        ticket: TicketSchema,
        source: Optional[EmployeeSchema],
        target: Optional[EmployeeSchema] = None,
    ):
        await run_side_effect(
            "derivation_notification",
            self.notifications.derivation_notification(derivation, ticket, target),
            ticket_id=ticket.id,
        )
        await run_side_effect(
            "derivation_audit",
            self.audit.log_derivation(derivation, ticket, source, target),
            ticket_id=ticket.id,
        )

    async def _hand_off(
        self,
        ticket: TicketSchema,
        source_id: str,
        source: Optional[EmployeeSchema],
        target: EmployeeSchema,
        options: DerivationOptions,
        completed_steps: List[str],
        source_availability: AgentAvailability = AgentAvailability.INACTIVE,
    ) -> Tuple[TicketSchema, EmployeeSchema, DerivationSchema, bool]:
        """Steps 3-6 of a hand-off to an agent; returns ticket, target, record and whether it was immediate."""
        immediate = can_take_immediately(target)
        now = self.clock()
        fields = {
            "derived_from": source_id,
            "derived_to": target.id,
            "derived_at": now,
            "derivation_reason": options.reason,
            "derivation_comment": options.comment,
            "service_type": options.new_service_type or ticket.service_type,
        }
        if immediate:
            fields.update({
                "status": TicketStatus.BEING_SERVED,
                "served_by": target.id,
                "served_at": now,
                "queue_type": None,
                "assigned_to_employee": None,
                "priority": options.priority or ticket.priority or TicketPriority.NORMAL,
            })
        else:
            fields.update({
                "status": TicketStatus.WAITING,
                "queue_type": QueueType.PERSONAL,
                "assigned_to_employee": target.id,
                "served_by": None,
                "served_at": None,
                "priority": options.priority or TicketPriority.HIGH,
            })

        updated = await self.tickets.update_ticket(ticket.id, fields)
        completed_steps.append("ticket")
        logger.info(
            f"Ticket {ticket.display_number} "
            f"{'now served by' if immediate else 'queued for'} {target.name}"
        )

        if source is not None:
            await self._free_source(source, ticket.id, source_availability)
            completed_steps.append("source_employee")

        if immediate:
            target = await self.employees.update_employee(target.id, {
                "current_ticket_id": ticket.id,
                "availability": AgentAvailability.ACTIVE,
            })
            completed_steps.append("target_employee")

        derivation = await self.derivations.create_derivation(
            ticket_id=ticket.id,
            from_employee_id=source_id,
            to_employee_id=target.id,
            derivation_type=DerivationType.TO_EMPLOYEE,
            status=DerivationStatus.AUTO_ASSIGNED if immediate else DerivationStatus.PENDING,
            reason=options.reason,
            comment=options.comment,
            new_service_type=options.new_service_type,
        )
        completed_steps.append("derivation_record")
        return updated, target, derivation, immediate

    async def _return_to_queue(
        self,
        ticket: TicketSchema,
        source_id: str,
        source: Optional[EmployeeSchema],
        options: DerivationOptions,
        priority: TicketPriority,
        completed_steps: List[str],
        source_availability: AgentAvailability = AgentAvailability.INACTIVE,
    ) -> Tuple[TicketSchema, DerivationSchema]:
        updated = await self.tickets.update_ticket(ticket.id, {
            "status": TicketStatus.WAITING,
            "queue_type": QueueType.GENERAL,
            "assigned_to_employee": None,
            "served_by": None,
            "served_at": None,
            "derived_from": source_id,
            "derived_to": None,
            "derived_at": self.clock(),
            "derivation_reason": options.reason,
            "derivation_comment": options.comment,
            "service_type": options.new_service_type or ticket.service_type,
            "priority": priority,
        })
        completed_steps.append("ticket")
        logger.info(f"Ticket {ticket.display_number} returned to the general queue")

        if source is not None:
            await self._free_source(source, ticket.id, source_availability)
            completed_steps.append("source_employee")

        derivation = await self.derivations.create_derivation(
            ticket_id=ticket.id,
            from_employee_id=source_id,
            derivation_type=DerivationType.TO_GENERAL_QUEUE,
            status=DerivationStatus.AUTO_ASSIGNED,
            reason=options.reason,
            comment=options.comment,
            new_service_type=options.new_service_type,
        )
        completed_steps.append("derivation_record")
        return updated, derivation

    async def derive_to_employee(
        self,
        ticket_id: str,
        from_employee_id: str,
        to_employee_id: str,
        options: Optional[DerivationOptions] = None,
    ) -> DerivationOutcomeSchema:
        """
        Hand a ticket being served to another agent.

        A free, active target takes it immediately. Otherwise it waits at
        the target's personal queue, defaulting to high priority.

        Args:
            ticket_id: Ticket being served
            from_employee_id: Agent handing it off; must be the one serving it
            to_employee_id: Agent receiving it
            options: Reason, comment, new service type, priority

        Returns:
            Derivation outcome

        Raises:
            NotFound, AgentInactive, QueueFull, InvalidTicketState: before any write
            StoreUnavailable: mid-saga; committed steps stay committed
        """
        options = options or DerivationOptions()
        completed_steps: List[str] = []
        logger.info(f"Deriving ticket {ticket_id} from {from_employee_id} to {to_employee_id}")

        try:
            ticket, _, _ = await self.validation.validate_derivation(ticket_id, to_employee_id, from_employee_id)

            # Re-read both agents right before writing
            source, target = await asyncio.gather(
                self.employees.get_by_id(from_employee_id),
                self.employees.get_by_id(to_employee_id),
            )
            if source is None:
                raise NotFound("Employee", from_employee_id)
            if target is None:
                raise NotFound("Employee", to_employee_id)

            updated, target, derivation, immediate = await self._hand_off(
                ticket, source.id, source, target, options, completed_steps
            )
        except Exception as e:
            await self._fail("derive_to_employee", ticket_id, completed_steps, e)
            raise

        await self._announce(derivation, updated, source, target)
        logger.info(f"Derivation {derivation.id} completed ({'immediate' if immediate else 'personal queue'})")
        return DerivationOutcomeSchema(derivation=derivation, ticket=updated, immediate=immediate)

    async def derive_to_general_queue(
        self,
        ticket_id: str,
        from_employee_id: str,
        options: Optional[DerivationOptions] = None,
    ) -> DerivationOutcomeSchema:
        """
        Send a ticket being served back to the general queue.

        Priority defaults to normal. The ticket is not auto-assigned here;
        it waits for the next agent that pulls from the general queue.
        """
        options = options or DerivationOptions()
        completed_steps: List[str] = []
        logger.info(f"Deriving ticket {ticket_id} from {from_employee_id} to the general queue")

        try:
            ticket = await self.validation.validate_derivation_to_queue(ticket_id, from_employee_id)
            source = await self.employees.get_by_id(from_employee_id)
            if source is None:
                raise NotFound("Employee", from_employee_id)

            updated, derivation = await self._return_to_queue(
                ticket, source.id, source, options, options.priority or TicketPriority.NORMAL, completed_steps
            )
        except Exception as e:
            await self._fail("derive_to_general_queue", ticket_id, completed_steps, e)
            raise

        await self._announce(derivation, updated, source)
        return DerivationOutcomeSchema(derivation=derivation, ticket=updated, immediate=False)

    # ========== Administration ==========

    @staticmethod
    def _admin_options(options: Optional[DerivationOptions], **defaults) -> DerivationOptions:
        options = options or DerivationOptions()
        update = {"reason": options.reason or ADMINISTRATIVE_DERIVATION_REASON}
        for field, value in defaults.items():
            update[field] = getattr(options, field) or value
        return options.model_copy(update=update)

    async def admin_derive_to_employee(
        self,
        ticket_id: str,
        to_employee_id: str,
        options: Optional[DerivationOptions] = None,
    ) -> DerivationOutcomeSchema:
        """
        Administration moves any open ticket to an agent.

        The source is whoever serves the ticket, or ADMIN_SOURCE when it is
        waiting. Priority defaults to high. A serving agent is freed and paused.
        """
        options = self._admin_options(options, priority=TicketPriority.HIGH)
        completed_steps: List[str] = []
        logger.info(f"Administrative derivation of ticket {ticket_id} to {to_employee_id}")

        try:
            ticket, _, _ = await self.validation.validate_admin_derivation(ticket_id, to_employee_id)
            source, target = await asyncio.gather(
                self._serving_agent(ticket),
                self.employees.get_by_id(to_employee_id),
            )
            if target is None:
                raise NotFound("Employee", to_employee_id)

            updated, target, derivation, immediate = await self._hand_off(
                ticket,
                ticket.served_by or ADMIN_SOURCE,
                source,
                target,
                options,
                completed_steps,
                source_availability=AgentAvailability.PAUSED,
            )
        except Exception as e:
            await self._fail("admin_derive_to_employee", ticket_id, completed_steps, e)
            raise

        await self._announce(derivation, updated, source, target)
        logger.info(f"Administrative derivation {derivation.id} completed")
        return DerivationOutcomeSchema(derivation=derivation, ticket=updated, immediate=immediate)

    async def admin_derive_to_general_queue(
        self,
        ticket_id: str,
        options: Optional[DerivationOptions] = None,
    ) -> DerivationOutcomeSchema:
        """Administration sends any open ticket back to the general queue, keeping its priority."""
        options = self._admin_options(options)
        completed_steps: List[str] = []
        logger.info(f"Administrative derivation of ticket {ticket_id} to the general queue")

        try:
            ticket = await self.validation.validate_admin_derivation_to_queue(ticket_id)
            source = await self._serving_agent(ticket)
            updated, derivation = await self._return_to_queue(
                ticket,
                ticket.served_by or ADMIN_SOURCE,
                source,
                options,
                options.priority or ticket.priority,
                completed_steps,
                source_availability=AgentAvailability.PAUSED,
            )
        except Exception as e:
            await self._fail("admin_derive_to_general_queue", ticket_id, completed_steps, e)
            raise

        await self._announce(derivation, updated, source)
        return DerivationOutcomeSchema(derivation=derivation, ticket=updated, immediate=False)

    async def recall_ticket(self, employee_id: str, ticket_id: str) -> TicketSchema:
        """
        Call an already completed or cancelled ticket back into service.

        Raises:
            NotFound: ticket or agent missing
            InvalidTicketState: ticket is not completed or cancelled
            AgentBusy: agent already serving a ticket
        """
        ticket, agent = await asyncio.gather(
            self.tickets.get_by_id(ticket_id),
            self.employees.get_by_id(employee_id),
        )
        if ticket is None:
            raise NotFound("Ticket", ticket_id)
        if agent is None:
            raise NotFound("Employee", employee_id)
        if not ticket.status.is_terminal:
            raise InvalidTicketState(
                f"Only completed or cancelled tickets can be recalled; {ticket.display_number} is {ticket.status.value}",
                ticket_id=ticket.id,
                status=ticket.status.value,
            )
        if agent.current_ticket_id:
            raise AgentBusy(
                f"{agent.name} must finish ticket {agent.current_ticket_id} before recalling another",
                employee_id=agent.id,
                current_ticket_id=agent.current_ticket_id,
            )

        completed_steps: List[str] = []
        try:
            recalled = await self.tickets.update_ticket(ticket.id, {
                "status": TicketStatus.BEING_SERVED,
                "served_by": agent.id,
                "served_at": self.clock(),
                "completed_at": None,
                "cancelled_at": None,
                "queue_type": None,
                "assigned_to_employee": None,
            })
            completed_steps.append("ticket")
            await self.employees.update_employee(agent.id, {
                "current_ticket_id": ticket.id,
                "availability": AgentAvailability.ACTIVE,
            })
            completed_steps.append("employee")
        except Exception as e:
            if completed_steps:
                DataIntegrityLogger.log_partial_workflow("recall_ticket", ticket.id, completed_steps, e)
            raise

        logger.info(f"Ticket {ticket.display_number} recalled by {agent.name}")
        return recalled

    async def force_complete(self, ticket_id: str) -> TicketSchema:
        """
        Administratively complete any non-terminal ticket.

        If an agent was serving it, that agent's current ticket is cleared,
        their served counter goes up and they are paused. A ticket with no
        serving agent completes with service_time 0 and no agent write.
        """
        ticket = await self.tickets.get_by_id(ticket_id)
        if ticket is None:
            raise NotFound("Ticket", ticket_id)
        if ticket.status.is_terminal:
            raise InvalidTicketState(
                f"Ticket {ticket.display_number} is already {ticket.status.value}",
                ticket_id=ticket.id,
                status=ticket.status.value,
            )

        now = self.clock()
        completed_steps: List[str] = []
        agent = None
        try:
            completed = await self.tickets.update_ticket(ticket.id, {
                "status": TicketStatus.COMPLETED,
                "completed_at": now,
                "service_time": seconds_between(ticket.served_at, now),
                "total_time": seconds_between(ticket.created_at, now),
                "cancellation_reason": ADMINISTRATIVE_COMPLETION_REASON,
                "queue_type": None,
                "assigned_to_employee": None,
            })
            completed_steps.append("ticket")

            if ticket.served_by:
                agent = await self.employees.get_by_id(ticket.served_by)
                if agent is None:
                    DataIntegrityLogger.log_missing_employee(ticket.id, ticket.served_by, "served_by")
                else:
                    fields = {"availability": AgentAvailability.PAUSED}
                    if agent.current_ticket_id == ticket.id:
                        fields["current_ticket_id"] = None
                    agent = await self.employees.update_employee(
                        agent.id, fields, increment="total_tickets_served"
                    )
                    completed_steps.append("employee")
        except Exception as e:
            if completed_steps:
                DataIntegrityLogger.log_partial_workflow("force_complete", ticket.id, completed_steps, e)
            raise

        logger.info(f"Ticket {ticket.display_number} completed by administration")
        await run_side_effect(
            "completion_audit",
            self.audit.log_ticket_completion(completed, agent, by_administration=True),
            ticket_id=ticket.id,
        )
        return completed

    async def _resolve(self, derivation_id: str, status: DerivationStatus) -> DerivationSchema:
        derivation = await self.derivations.get_by_id(derivation_id)
        if derivation is None:
            raise NotFound("Derivation", derivation_id)
        if derivation.status != DerivationStatus.PENDING:
            raise InvalidDerivationState(
                f"Derivation {derivation_id} is {derivation.status.value}, not pending",
                derivation_id=derivation_id,
                status=derivation.status.value,
            )
        resolved = await self.derivations.set_status(derivation_id, status)
        logger.info(f"Derivation {derivation_id} {status.value}")
        return resolved

    async def accept_derivation(self, derivation_id: str) -> DerivationSchema:
        return await self._resolve(derivation_id, DerivationStatus.ACCEPTED)

    async def reject_derivation(self, derivation_id: str) -> DerivationSchema:
        return await self._resolve(derivation_id, DerivationStatus.REJECTED)
