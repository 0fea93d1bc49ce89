import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from nexus_desk.errors import ConcurrentModificationError, NexusDeskError
from nexus_desk.locales import appointment_message, normalize_language
from nexus_desk.models.plan import Feature
from nexus_desk.models.ticket import (
    AppointmentDetails,
    AppointmentStatus,
    Party,
    SenderRole,
    Ticket,
    new_id,
)
from nexus_desk.services.chat_thread import ChatThreadEngine
from nexus_desk.services.plan_quota import QuotaService
from nexus_desk.services.undo_timer import UndoTimerRegistry

logger = logging.getLogger(__name__)

ACCEPTABLE_BY = {
    Party.USER: frozenset({AppointmentStatus.PENDING_USER_APPROVAL, AppointmentStatus.RESCHEDULED_BY_AGENT}),
    Party.AGENT: frozenset({AppointmentStatus.PENDING_AGENT_APPROVAL, AppointmentStatus.RESCHEDULED_BY_USER}),
}

RESCHEDULED_BY = {
    Party.USER: AppointmentStatus.RESCHEDULED_BY_USER,
    Party.AGENT: AppointmentStatus.RESCHEDULED_BY_AGENT,
}

CANCELLED_BY = {
    Party.USER: AppointmentStatus.CANCELLED_BY_USER,
    Party.AGENT: AppointmentStatus.CANCELLED_BY_AGENT,
}

SCHEDULING_UNAVAILABLE = "Appointment scheduling is not available on the current plan"

SENDER_FOR = {
    Party.USER: SenderRole.USER,
    Party.AGENT: SenderRole.AGENT,
}


class AppointmentRejected(NexusDeskError):
    pass


@dataclass
class AppointmentOutcome:
    ok: bool
    ticket: Optional[Ticket] = None
    appointment: Optional[AppointmentDetails] = None
    snapshot: Optional[AppointmentDetails] = None
    reason: Optional[str] = None
    plan_denied: bool = False

    @classmethod
    def failed(cls, reason: str, ticket: Optional[Ticket] = None) -> "AppointmentOutcome":
        return cls(ok=False, ticket=ticket, reason=reason)


def validate_slot(date: str, time: str, location: str) -> None:
    try:
        datetime.strptime(date, "%Y-%m-%d")
    except ValueError:
        raise AppointmentRejected(f"Invalid appointment date {date!r}, expected YYYY-MM-DD") from None
    try:
        datetime.strptime(time, "%H:%M")
    except ValueError:
        raise AppointmentRejected(f"Invalid appointment time {time!r}, expected HH:MM") from None
    if not location.strip():
        raise AppointmentRejected("A location or meeting method is required")


def _require_active(current: Optional[AppointmentDetails], appointment_id: Optional[str]) -> AppointmentDetails:
    if current is None:
        raise AppointmentRejected("No current appointment on this ticket")
    if appointment_id is not None and current.id != appointment_id:
        raise AppointmentRejected(f"Appointment {appointment_id} is no longer the current appointment")
    if current.is_final:
        raise AppointmentRejected(f"Appointment {current.id} is already {current.status.value}")
    return current


class AppointmentNegotiator:
    """Proposal / acceptance / cancellation workflow for a ticket's appointment.

    Every state change replaces ``current_appointment`` and pushes the replaced value
    onto its history in the same write that posts the matching chat message.
    """

    def __init__(
        self,
        engine: ChatThreadEngine,
        quota: QuotaService,
        undo_timers: Optional[UndoTimerRegistry] = None,
        default_language: str = "en",
    ):
        self.engine = engine
        self.quota = quota
        self.undo_timers = undo_timers or UndoTimerRegistry()
        self.default_language = default_language

    async def _transition(
        self,
        company_id: str,
        ticket_id: str,
        actor: Party,
        decide: Callable[[Optional[AppointmentDetails]], AppointmentDetails],
        language: Optional[str],
        agent_id: Optional[str],
    ) -> AppointmentOutcome:
        language = normalize_language(language, self.default_language)

        def build(t: Ticket) -> dict[str, Any]:
            appointment = decide(t.current_appointment)
            text = appointment_message(
                appointment.status.value,
                language,
                date=appointment.proposed_date,
                time=appointment.proposed_time,
                location=appointment.location_or_method,
            )
            return {
                "current_appointment": appointment,
                **self.engine.message_patch(t, SENDER_FOR[actor], text, agent_id if actor == Party.AGENT else None),
            }

        try:
            ticket, _ = await self.engine.mutate(company_id, ticket_id, build)
        except AppointmentRejected as exc:
            logger.info("Appointment change on ticket %s rejected: %s", ticket_id, exc)
            return AppointmentOutcome.failed(str(exc))

        logger.info(
            "Appointment %s on ticket %s is now %s",
            ticket.current_appointment.id,
            ticket_id,
            ticket.current_appointment.status.value,
        )
        return AppointmentOutcome(ok=True, ticket=ticket, appointment=ticket.current_appointment)

    async def _scheduling_allowed(self, company_id: str) -> bool:
        return await self.quota.check_feature(company_id, Feature.APPOINTMENT_SCHEDULING)

    async def propose(
        self,
        company_id: str,
        ticket_id: str,
        date: str,
        time: str,
        location: str,
        proposed_by: Party = Party.AGENT,
        agent_id: Optional[str] = None,
        notes: Optional[str] = None,
        language: Optional[str] = None,
    ) -> AppointmentOutcome:
        if not await self._scheduling_allowed(company_id):
            return AppointmentOutcome(ok=False, reason=SCHEDULING_UNAVAILABLE, plan_denied=True)

        status = (
            AppointmentStatus.PENDING_USER_APPROVAL
            if proposed_by == Party.AGENT
            else AppointmentStatus.PENDING_AGENT_APPROVAL
        )

        def decide(current: Optional[AppointmentDetails]) -> AppointmentDetails:
            validate_slot(date, time, location)
            values = {
                "proposed_by": proposed_by,
                "proposed_date": date,
                "proposed_time": time,
                "location_or_method": location,
                "status": status,
                "notes": notes,
            }
            if current is None:
                return AppointmentDetails(**values)
            if not current.is_final:
                raise AppointmentRejected(
                    f"Appointment {current.id} is still {current.status.value}; propose an alternative instead"
                )
            # a fresh proposal after a cancellation continues the same history chain
            return current.supersede(id=new_id(), **values)

        return await self._transition(company_id, ticket_id, proposed_by, decide, language, agent_id)

    async def accept(
        self,
        company_id: str,
        ticket_id: str,
        actor: Party,
        appointment_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        language: Optional[str] = None,
    ) -> AppointmentOutcome:
        def decide(current: Optional[AppointmentDetails]) -> AppointmentDetails:
            current = _require_active(current, appointment_id)
            if current.status not in ACCEPTABLE_BY[actor]:
                raise AppointmentRejected(
                    f"The {actor.value} cannot accept an appointment that is {current.status.value}"
                )
            return current.supersede(status=AppointmentStatus.CONFIRMED)

        return await self._transition(company_id, ticket_id, actor, decide, language, agent_id)

    async def propose_alternative(
        self,
        company_id: str,
        ticket_id: str,
        actor: Party,
        date: str,
        time: str,
        location: str,
        appointment_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        notes: Optional[str] = None,
        language: Optional[str] = None,
    ) -> AppointmentOutcome:
        if not await self._scheduling_allowed(company_id):
            return AppointmentOutcome(ok=False, reason=SCHEDULING_UNAVAILABLE, plan_denied=True)

        def decide(current: Optional[AppointmentDetails]) -> AppointmentDetails:
            current = _require_active(current, appointment_id)
            validate_slot(date, time, location)
            return current.supersede(
                proposed_by=actor,
                proposed_date=date,
                proposed_time=time,
                location_or_method=location,
                status=RESCHEDULED_BY[actor],
                notes=notes if notes is not None else current.notes,
            )

        return await self._transition(company_id, ticket_id, actor, decide, language, agent_id)

    async def cancel(
        self,
        company_id: str,
        ticket_id: str,
        actor: Party,
        appointment_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        language: Optional[str] = None,
    ) -> AppointmentOutcome:
        def decide(current: Optional[AppointmentDetails]) -> AppointmentDetails:
            current = _require_active(current, appointment_id)
            return current.supersede(status=CANCELLED_BY[actor])

        return await self._transition(company_id, ticket_id, actor, decide, language, agent_id)

    async def delete(
        self,
        company_id: str,
        ticket_id: str,
        appointment_id: str,
        actor: Party = Party.AGENT,
        agent_id: Optional[str] = None,
        language: Optional[str] = None,
    ) -> AppointmentOutcome:
        """Remove the current appointment and open the undo window.

        The returned ``snapshot`` is the appointment exactly as it was, history included.
        """
        language = normalize_language(language, self.default_language)
        removed: list[AppointmentDetails] = []

        def build(t: Ticket) -> dict[str, Any]:
            current = t.current_appointment
            if current is None or current.id != appointment_id:
                raise AppointmentRejected(f"Appointment {appointment_id} is not the current appointment")
            removed[:] = [current]
            text = appointment_message(
                "deleted",
                language,
                date=current.proposed_date,
                time=current.proposed_time,
                location=current.location_or_method,
            )
            return {
                "current_appointment": None,
                **self.engine.message_patch(t, SENDER_FOR[actor], text, agent_id if actor == Party.AGENT else None),
            }

        try:
            ticket, _ = await self.engine.mutate(company_id, ticket_id, build)
        except AppointmentRejected as exc:
            return AppointmentOutcome.failed(str(exc))

        snapshot = removed[0]
        self.undo_timers.arm(ticket_id, snapshot)
        logger.info(
            "Appointment %s deleted from ticket %s, restorable for %ss",
            appointment_id,
            ticket_id,
            self.undo_timers.window_seconds,
        )
        return AppointmentOutcome(ok=True, ticket=ticket, snapshot=snapshot.model_copy(deep=True))

    async def restore(
        self,
        company_id: str,
        ticket_id: str,
        snapshot: Optional[AppointmentDetails] = None,
        actor: Party = Party.AGENT,
        agent_id: Optional[str] = None,
        language: Optional[str] = None,
    ) -> AppointmentOutcome:
        language = normalize_language(language, self.default_language)
        ticket = await self.engine.store.get_ticket(company_id, ticket_id)

        entry = self.undo_timers.pending(ticket_id)
        if entry is None:
            return AppointmentOutcome.failed("Nothing to restore: the undo window has closed", ticket)
        if not entry.matches(snapshot):
            return AppointmentOutcome.failed("The appointment to restore is no longer the pending deletion", ticket)
        if ticket.current_appointment is not None:
            return AppointmentOutcome.failed("Another appointment is now current on this ticket", ticket)

        entry = self.undo_timers.take(ticket_id)
        restored = entry.snapshot
        text = appointment_message(
            "restored",
            language,
            date=restored.proposed_date,
            time=restored.proposed_time,
            location=restored.location_or_method,
        )
        patch = {
            "current_appointment": restored,
            **self.engine.message_patch(ticket, SENDER_FOR[actor], text, agent_id if actor == Party.AGENT else None),
        }
        try:
            ticket = await self.engine.store.update_ticket(
                company_id, ticket_id, patch, expected_version=ticket.version
            )
        except ConcurrentModificationError:
            self.undo_timers.put_back(entry)
            return AppointmentOutcome.failed("The ticket changed during restore; try again")

        logger.info("Appointment %s restored on ticket %s", restored.id, ticket_id)
        return AppointmentOutcome(ok=True, ticket=ticket, appointment=ticket.current_appointment)
