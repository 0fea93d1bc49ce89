import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from nexus_desk.agents.drafter import TicketDrafter, fallback_draft
from nexus_desk.agents.profiles import AIProfileRouter, ModelReply, PromptContext
from nexus_desk.agents.summarizer import TicketSummarizer
from nexus_desk.errors import ConcurrentModificationError, FeatureNotAvailableError, UnknownAgentError
from nexus_desk.locales import normalize_language
from nexus_desk.models.plan import Feature
from nexus_desk.models.ticket import (
    ChatMessage,
    InternalNote,
    SenderRole,
    Ticket,
    TicketCreate,
    TicketStatus,
)
from nexus_desk.services.plan_quota import QUOTA_ROLES, QuotaDecision, QuotaService
from nexus_desk.services.ticket_store import TicketStore

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3

PatchBuilder = Callable[[Ticket], Optional[dict[str, Any]]]


@dataclass
class AppendResult:
    ticket: Ticket
    ai_invoked: bool
    escalation_suggested: bool = False
    ai_message: Optional[ChatMessage] = None


@dataclass
class TicketCreation:
    ticket: Optional[Ticket]
    decision: QuotaDecision

    @property
    def created(self) -> bool:
        return self.ticket is not None


def next_status(current: TicketStatus, sender: SenderRole) -> TicketStatus:
    if sender == SenderRole.USER and current in (TicketStatus.RESOLVED, TicketStatus.CLOSED):
        return TicketStatus.IN_PROGRESS
    if sender == SenderRole.AGENT and current in (TicketStatus.OPEN, TicketStatus.RESOLVED):
        return TicketStatus.IN_PROGRESS
    return current


class ChatThreadEngine:
    def __init__(
        self,
        store: TicketStore,
        router: AIProfileRouter,
        quota: QuotaService,
        summarizer: Optional[TicketSummarizer] = None,
        drafter: Optional[TicketDrafter] = None,
        default_language: str = "en",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.router = router
        self.quota = quota
        self.summarizer = summarizer
        self.drafter = drafter
        self.default_language = default_language
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._inflight: dict[str, set[asyncio.Task]] = {}
        self._abandoned: set[asyncio.Task] = set()

    def _next_timestamp(self, ticket: Ticket) -> datetime:
        now = self.clock()
        last = ticket.last_message_at
        return max(now, last) if last else now

    def message_patch(
        self,
        ticket: Ticket,
        sender: SenderRole,
        text: str,
        agent_id: Optional[str] = None,
        **tags: Any,
    ) -> dict[str, Any]:
        message = ChatMessage(
            sender=sender,
            text=text,
            timestamp=self._next_timestamp(ticket),
            agent_id=agent_id,
            **tags,
        )
        return {"chat_history": [*ticket.chat_history, message]}

    async def mutate(self, company_id: str, ticket_id: str, build_patch: PatchBuilder) -> tuple[Ticket, bool]:
        """Read-modify-write under the ticket's version.

        ``build_patch`` sees the freshest ticket on every attempt and may return None to
        skip the write. Returns the resulting ticket and whether a write happened.
        """
        attempt = 0
        while True:
            attempt += 1
            ticket = await self.store.get_ticket(company_id, ticket_id)
            patch = build_patch(ticket)
            if patch is None:
                return ticket, False
            try:
                updated = await self.store.update_ticket(
                    company_id, ticket_id, patch, expected_version=ticket.version
                )
                return updated, True
            except ConcurrentModificationError:
                if attempt == MAX_WRITE_ATTEMPTS:
                    raise
                logger.debug("Retrying write on ticket %s (attempt %d)", ticket_id, attempt)

    async def create_ticket(self, company_id: str, data: TicketCreate) -> TicketCreation:
        decision = await self.quota.check_ticket_creation(company_id)
        if not decision.allowed:
            return TicketCreation(ticket=None, decision=decision)

        plan = await self.quota.plans.get_plan(company_id)
        history: list[ChatMessage] = []
        for message in data.initial_history:
            if history and message.timestamp < history[-1].timestamp:
                message = message.model_copy(update={"timestamp": history[-1].timestamp})
            history.append(message)

        ticket = Ticket(
            company_id=company_id,
            user_id=data.user_id,
            title=data.title,
            description=data.description,
            category=data.category,
            priority=data.priority,
            chat_history=history,
            assigned_ai_level=plan.ai_level,
        )
        created = await self.store.create_ticket(ticket)
        logger.info("Ticket %s created for company %s", created.id, company_id)
        return TicketCreation(ticket=created, decision=decision)

    async def create_ticket_from_chat(
        self,
        company_id: str,
        user_id: str,
        history: list[ChatMessage],
        valid_categories: list[str],
        language: Optional[str] = None,
    ) -> TicketCreation:
        """Open a ticket from a pre-ticket help chat, with the model drafting its fields."""
        decision = await self.quota.check_ticket_creation(company_id)
        if not decision.allowed:
            return TicketCreation(ticket=None, decision=decision)

        language = normalize_language(language, self.default_language)
        if self.drafter is None:
            draft = fallback_draft(history, valid_categories, language)
        else:
            draft = await self.drafter.draft(history, valid_categories, language)
        return await self.create_ticket(company_id, draft.to_ticket_create(user_id, history))

    async def record_message(
        self,
        company_id: str,
        ticket_id: str,
        sender: SenderRole,
        text: str,
        agent_id: Optional[str] = None,
    ) -> Ticket:
        ticket, _ = await self.mutate(
            company_id,
            ticket_id,
            lambda t: self.message_patch(t, sender, text, agent_id),
        )
        return ticket

    async def append_inbound_message(
        self,
        company_id: str,
        ticket_id: str,
        sender: SenderRole,
        text: str,
        agent_id: Optional[str] = None,
        language: Optional[str] = None,
    ) -> AppendResult:
        if sender not in (SenderRole.USER, SenderRole.AGENT):
            raise ValueError(f"Inbound messages come from a user or an agent, not {sender.value!r}")

        def build(t: Ticket) -> dict[str, Any]:
            patch = self.message_patch(t, sender, text, agent_id)
            status = next_status(t.status, sender)
            if status != t.status:
                patch["status"] = status
            return patch

        ticket, _ = await self.mutate(company_id, ticket_id, build)

        if sender != SenderRole.USER or ticket.is_human_assigned:
            return AppendResult(ticket=ticket, ai_invoked=False)

        reply = await self._run_ai(company_id, ticket, language)
        if reply is None:
            return AppendResult(ticket=await self.store.get_ticket(company_id, ticket_id), ai_invoked=False)

        return await self._append_ai_reply(company_id, ticket_id, reply)

    async def _run_ai(self, company_id: str, ticket: Ticket, language: Optional[str]) -> Optional[ModelReply]:
        company = await self.store.get_company(company_id)
        ctx = PromptContext(
            ticket_title=ticket.title,
            ticket_category=ticket.category,
            assigned_ai_level=ticket.assigned_ai_level,
            language=normalize_language(language, self.default_language),
            chat_history=ticket.chat_history,
            company_id=company_id,
            company_name=company.name if company else None,
            ticket_id=ticket.id,
            ai_settings=company.ai_settings if company else None,
        )

        task = asyncio.ensure_future(self.router.respond(ctx))
        self._inflight.setdefault(ticket.id, set()).add(task)
        try:
            return await task
        except asyncio.CancelledError:
            if task not in self._abandoned:
                raise
            logger.info("AI reply for ticket %s abandoned after human takeover", ticket.id)
            return None
        finally:
            self._abandoned.discard(task)
            tasks = self._inflight.get(ticket.id)
            if tasks is not None:
                tasks.discard(task)
                if not tasks:
                    del self._inflight[ticket.id]

    async def _append_ai_reply(self, company_id: str, ticket_id: str, reply: ModelReply) -> AppendResult:
        def build(t: Ticket) -> Optional[dict[str, Any]]:
            # the ticket may have been handed to a human while the model was thinking
            if t.is_human_assigned:
                return None
            patch = self.message_patch(
                t,
                SenderRole.AI,
                reply.response_text,
                ai_profile_key=reply.profile_key,
                intake_payload=reply.intake_data,
            )
            if reply.attorney_summary:
                patch["internal_notes"] = [
                    *t.internal_notes,
                    InternalNote(
                        text=reply.attorney_summary,
                        timestamp=patch["chat_history"][-1].timestamp,
                        ai_profile_key=reply.profile_key,
                        intake_payload=reply.intake_data,
                    ),
                ]
            return patch

        ticket, written = await self.mutate(company_id, ticket_id, build)
        if not written:
            logger.info("Discarded AI reply for ticket %s: now assigned to %s", ticket_id, ticket.assigned_agent_id)
            return AppendResult(ticket=ticket, ai_invoked=False)

        return AppendResult(
            ticket=ticket,
            ai_invoked=True,
            escalation_suggested=reply.escalation_suggested,
            ai_message=ticket.chat_history[-1],
        )

    def cancel_inflight(self, ticket_id: str) -> int:
        cancelled = 0
        for task in self._inflight.get(ticket_id, ()):
            if not task.done():
                self._abandoned.add(task)
                task.cancel()
                cancelled += 1
        return cancelled

    async def assign_agent(
        self,
        company_id: str,
        ticket_id: str,
        agent_id: Optional[str],
        language: Optional[str] = None,
    ) -> Ticket:
        if not await self.quota.check_feature(company_id, Feature.TICKET_ASSIGNMENT):
            raise FeatureNotAvailableError(Feature.TICKET_ASSIGNMENT.value)
        if agent_id and await self.store.get_user_role(company_id, agent_id) not in QUOTA_ROLES:
            raise UnknownAgentError(company_id, agent_id)

        previous = (await self.store.get_ticket(company_id, ticket_id)).assigned_agent_id
        ticket, _ = await self.mutate(company_id, ticket_id, lambda t: {"assigned_agent_id": agent_id})
        if agent_id:
            self.cancel_inflight(ticket_id)

        if not agent_id or agent_id == previous or self.summarizer is None:
            return ticket

        summary = await self.summarizer.summarize(ticket, normalize_language(language, self.default_language))

        def build(t: Ticket) -> dict[str, Any]:
            return {**self.message_patch(t, SenderRole.SYSTEM_SUMMARY, summary), "summary": summary}

        ticket, _ = await self.mutate(company_id, ticket_id, build)
        logger.info("Ticket %s assigned to agent %s", ticket_id, agent_id)
        return ticket

    async def update_status(self, company_id: str, ticket_id: str, status: TicketStatus) -> Ticket:
        ticket, _ = await self.mutate(
            company_id,
            ticket_id,
            lambda t: None if t.status == status else {"status": status},
        )
        return ticket

    async def delete_ticket(self, company_id: str, ticket_id: str) -> None:
        await self.store.delete_ticket(company_id, ticket_id)
        self.cancel_inflight(ticket_id)
        logger.info("Ticket %s deleted for company %s", ticket_id, company_id)
