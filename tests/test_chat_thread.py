import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from conftest import COMPANY_ID, FREEMIUM_COMPANY_ID, LAW_FIRM_ID, model_json, model_json_draft
from nexus_desk.agents.drafter import TicketDrafter
from nexus_desk.agents.model_client import ModelClient
from nexus_desk.agents.summarizer import TicketSummarizer
from nexus_desk.errors import FeatureNotAvailableError, ModelInvocationError, TenantIsolationError, UnknownAgentError
from nexus_desk.locales import ai_fallback_message, summary_fallback_message
from nexus_desk.models.plan import PLAN_LIMITS, Feature, PlanTier
from nexus_desk.models.ticket import ChatMessage, SenderRole, TicketCreate, TicketPriority, TicketStatus, UserRole
from nexus_desk.services import ChatThreadEngine, next_status


@pytest.mark.parametrize(
    "current,sender,expected",
    [
        (TicketStatus.RESOLVED, SenderRole.USER, TicketStatus.IN_PROGRESS),
        (TicketStatus.CLOSED, SenderRole.USER, TicketStatus.IN_PROGRESS),
        (TicketStatus.OPEN, SenderRole.USER, TicketStatus.OPEN),
        (TicketStatus.OPEN, SenderRole.AGENT, TicketStatus.IN_PROGRESS),
        (TicketStatus.RESOLVED, SenderRole.AGENT, TicketStatus.IN_PROGRESS),
        (TicketStatus.CLOSED, SenderRole.AGENT, TicketStatus.CLOSED),
        (TicketStatus.IN_PROGRESS, SenderRole.AGENT, TicketStatus.IN_PROGRESS),
    ],
)
def test_status_rules(current, sender, expected):
    assert next_status(current, sender) == expected


@pytest.mark.asyncio
async def test_user_message_gets_ai_reply(engine, model_client, open_ticket):
    ticket = await open_ticket()

    result = await engine.append_inbound_message(COMPANY_ID, ticket.id, SenderRole.USER, "My printer is offline")

    assert result.ai_invoked is True
    assert result.escalation_suggested is False
    senders = [m.sender for m in result.ticket.chat_history]
    assert senders == [SenderRole.USER, SenderRole.AI]
    assert result.ai_message.text == "Have you tried restarting the printer?"
    assert result.ai_message.ai_profile_key == "default-nexus-it"

    request = model_client.generate.await_args.args[0]
    assert request.conversation[-1].role == "user"
    assert request.conversation[-1].text == "My printer is offline"
    assert "Printer offline" in request.system_instruction


@pytest.mark.asyncio
async def test_agent_message_does_not_invoke_ai(engine, model_client, open_ticket):
    ticket = await open_ticket()

    result = await engine.append_inbound_message(
        COMPANY_ID, ticket.id, SenderRole.AGENT, "Looking into it", agent_id="agent-1"
    )

    assert result.ai_invoked is False
    assert result.ticket.status == TicketStatus.IN_PROGRESS
    assert result.ticket.chat_history[-1].agent_id == "agent-1"
    model_client.generate.assert_not_called()


@pytest.mark.asyncio
async def test_closed_ticket_stays_closed_on_agent_message(engine, open_ticket):
    ticket = await open_ticket()
    await engine.update_status(COMPANY_ID, ticket.id, TicketStatus.CLOSED)

    result = await engine.append_inbound_message(COMPANY_ID, ticket.id, SenderRole.AGENT, "Final note")

    assert result.ticket.status == TicketStatus.CLOSED


@pytest.mark.asyncio
async def test_user_reopens_resolved_ticket(engine, open_ticket):
    ticket = await open_ticket()
    await engine.update_status(COMPANY_ID, ticket.id, TicketStatus.RESOLVED)

    result = await engine.append_inbound_message(COMPANY_ID, ticket.id, SenderRole.USER, "It broke again")

    assert result.ticket.status == TicketStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_no_ai_reply_once_human_assigned(engine, model_client, open_ticket):
    ticket = await open_ticket()
    await engine.assign_agent(COMPANY_ID, ticket.id, "agent-1")

    result = await engine.append_inbound_message(COMPANY_ID, ticket.id, SenderRole.USER, "Hello?")

    assert result.ai_invoked is False
    assert all(m.sender != SenderRole.AI for m in result.ticket.chat_history)
    model_client.generate.assert_not_called()


@pytest.mark.asyncio
async def test_timestamps_never_go_backwards(store, router, quota, open_ticket):
    base = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    # a clock that jumps backwards on every read
    ticks = iter(base - timedelta(seconds=i) for i in range(100))
    engine = ChatThreadEngine(store, router, quota, clock=lambda: next(ticks))
    ticket = await open_ticket()

    for text in ("first", "second", "third"):
        await engine.append_inbound_message(COMPANY_ID, ticket.id, SenderRole.USER, text)

    history = (await store.get_ticket(COMPANY_ID, ticket.id)).chat_history
    assert len(history) == 6
    stamps = [m.timestamp for m in history]
    assert stamps == sorted(stamps)


@pytest.mark.asyncio
async def test_initial_history_is_clamped(engine):
    later = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    creation = await engine.create_ticket(
        COMPANY_ID,
        TicketCreate(
            user_id="user-1",
            title="VPN",
            initial_history=[
                ChatMessage(sender=SenderRole.USER, text="hi", timestamp=later),
                ChatMessage(sender=SenderRole.AI, text="hello", timestamp=later - timedelta(minutes=5)),
            ],
        ),
    )

    stamps = [m.timestamp for m in creation.ticket.chat_history]
    assert stamps == [later, later]


@pytest.mark.asyncio
async def test_reassignment_abandons_inflight_reply(engine, model_client, store, open_ticket):
    ticket = await open_ticket()
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow_generate(request):
        started.set()
        await release.wait()
        return model_json("too late")

    model_client.generate.side_effect = slow_generate

    pending = asyncio.create_task(
        engine.append_inbound_message(COMPANY_ID, ticket.id, SenderRole.USER, "Anyone there?")
    )
    await started.wait()
    await engine.assign_agent(COMPANY_ID, ticket.id, "agent-1")
    result = await pending

    assert result.ai_invoked is False
    stored = await store.get_ticket(COMPANY_ID, ticket.id)
    assert [m.sender for m in stored.chat_history] == [SenderRole.USER]
    assert stored.assigned_agent_id == "agent-1"


@pytest.mark.asyncio
async def test_reply_discarded_when_assigned_elsewhere_during_call(engine, model_client, store, open_ticket):
    ticket = await open_ticket()
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow_generate(request):
        started.set()
        await release.wait()
        return model_json("ghost")

    model_client.generate.side_effect = slow_generate

    pending = asyncio.create_task(
        engine.append_inbound_message(COMPANY_ID, ticket.id, SenderRole.USER, "Anyone there?")
    )
    await started.wait()
    # another worker assigns the ticket directly through the store
    await store.update_ticket(COMPANY_ID, ticket.id, {"assigned_agent_id": "agent-2"})
    release.set()
    result = await pending

    assert result.ai_invoked is False
    assert all(m.text != "ghost" for m in result.ticket.chat_history)


@pytest.mark.asyncio
async def test_model_failure_uses_localized_fallback(engine, model_client, open_ticket):
    ticket = await open_ticket()
    model_client.generate.side_effect = ModelInvocationError("upstream exploded: key sk-123")

    result = await engine.append_inbound_message(
        COMPANY_ID, ticket.id, SenderRole.USER, "Bonjour", language="fr"
    )

    assert result.ai_invoked is True
    assert result.escalation_suggested is True
    assert result.ai_message.text == ai_fallback_message("fr")
    assert "exploded" not in result.ai_message.text


@pytest.mark.asyncio
async def test_model_timeout_uses_fallback(store, quota, model_client, open_ticket):
    from nexus_desk.agents.profiles import AIProfileRouter

    async def hang(request):
        await asyncio.sleep(5)

    model_client.generate.side_effect = hang
    engine = ChatThreadEngine(store, AIProfileRouter(model_client, timeout_seconds=0.05), quota)
    ticket = await open_ticket()

    result = await engine.append_inbound_message(COMPANY_ID, ticket.id, SenderRole.USER, "hello")

    assert result.escalation_suggested is True
    assert result.ai_message.text == ai_fallback_message("en")


@pytest.mark.asyncio
async def test_malformed_model_output_uses_fallback(engine, model_client, open_ticket):
    ticket = await open_ticket()
    model_client.generate.return_value = '{"responseText": 42, "escalationSuggested": false}'

    result = await engine.append_inbound_message(COMPANY_ID, ticket.id, SenderRole.USER, "hello", language="ar")

    assert result.ai_message.text == ai_fallback_message("ar")


@pytest.mark.asyncio
async def test_cross_tenant_append_rejected(engine, store, open_ticket):
    ticket = await open_ticket()

    with pytest.raises(TenantIsolationError):
        await engine.append_inbound_message(FREEMIUM_COMPANY_ID, ticket.id, SenderRole.USER, "sneaky")

    stored = await store.get_ticket(COMPANY_ID, ticket.id)
    assert stored.chat_history == []


@pytest.mark.asyncio
async def test_ticket_creation_blocked_at_quota(engine, store, plan_overrides):
    plan_overrides[FREEMIUM_COMPANY_ID] = PLAN_LIMITS[PlanTier.FREEMIUM].model_copy(
        update={"max_tickets_per_month": 2}
    )
    for i in range(2):
        creation = await engine.create_ticket(FREEMIUM_COMPANY_ID, TicketCreate(user_id="u", title=f"t{i}"))
        assert creation.created

    denied = await engine.create_ticket(FREEMIUM_COMPANY_ID, TicketCreate(user_id="u", title="one too many"))

    assert denied.ticket is None
    assert denied.decision.allowed is False
    assert "2" in denied.decision.reason
    assert len(await store.list_tickets(FREEMIUM_COMPANY_ID)) == 2


@pytest.mark.asyncio
async def test_pro_plan_tickets_start_at_level_two(open_ticket):
    ticket = await open_ticket(LAW_FIRM_ID)

    assert ticket.assigned_ai_level == 2


@pytest.mark.asyncio
async def test_attorney_summary_stored_as_internal_note(engine, model_client, open_ticket):
    ticket = await open_ticket(LAW_FIRM_ID, title="Work visa")
    model_client.generate.return_value = model_json(
        "Thank you, an attorney will review your case.\n\n"
        "[ATTORNEY_SUMMARY]Business immigration, French national in LA, no work visa.[/ATTORNEY_SUMMARY]",
        escalation=True,
        intakeData={"name": "Claire Martin", "origin_country": "France", "city": "Los Angeles"},
    )

    result = await engine.append_inbound_message(
        LAW_FIRM_ID, ticket.id, SenderRole.USER, "I am from France and want to work in LA"
    )

    assert result.ai_message.text == "Thank you, an attorney will review your case."
    assert result.ai_message.ai_profile_key == "lai-turner-intake"
    assert result.ai_message.intake_payload["full_name"] == "Claire Martin"

    [note] = result.ticket.internal_notes
    assert note.text == "Business immigration, French national in LA, no work visa."
    assert note.agent_id is None
    assert note.intake_payload["current_location"] == "Los Angeles"

    public = result.ticket.public_view()
    assert "internal_notes" not in public
    assert "intake_payload" not in public["chat_history"][-1]


@pytest.mark.asyncio
async def test_assignment_posts_handoff_summary(store, router, quota, open_ticket):
    summary_client = AsyncMock(spec=ModelClient)
    summary_client.generate.return_value = "  User's printer is offline; restart did not help.  "
    engine = ChatThreadEngine(store, router, quota, summarizer=TicketSummarizer(summary_client, timeout_seconds=1))
    ticket = await open_ticket()
    await engine.append_inbound_message(COMPANY_ID, ticket.id, SenderRole.USER, "Printer offline")

    assigned = await engine.assign_agent(COMPANY_ID, ticket.id, "agent-7")

    last = assigned.chat_history[-1]
    assert last.sender == SenderRole.SYSTEM_SUMMARY
    assert last.text == "User's printer is offline; restart did not help."
    assert assigned.summary == last.text
    assert assigned.assigned_agent_id == "agent-7"

    request = summary_client.generate.await_args.args[0]
    assert [t.role for t in request.conversation][-2:] == ["model", "user"]


@pytest.mark.asyncio
async def test_summary_failure_hides_error(store, router, quota, open_ticket):
    summary_client = AsyncMock(spec=ModelClient)
    summary_client.generate.side_effect = ModelInvocationError("rate limited: org-xyz")
    engine = ChatThreadEngine(store, router, quota, summarizer=TicketSummarizer(summary_client, timeout_seconds=1))
    ticket = await open_ticket()

    assigned = await engine.assign_agent(COMPANY_ID, ticket.id, "agent-7", language="fr")

    assert assigned.chat_history[-1].text == summary_fallback_message("fr")


@pytest.mark.asyncio
async def test_assignment_requires_feature(engine, plan_overrides, open_ticket):
    plan_overrides[COMPANY_ID] = PLAN_LIMITS[PlanTier.STANDARD].model_copy(
        update={"feature_flags": {Feature.TICKET_ASSIGNMENT.value: False}}
    )
    ticket = await open_ticket()

    with pytest.raises(FeatureNotAvailableError):
        await engine.assign_agent(COMPANY_ID, ticket.id, "agent-1")


@pytest.mark.asyncio
async def test_history_sent_to_model_is_capped(store, quota, model_client, open_ticket):
    from nexus_desk.agents.profiles import AIProfileRouter

    engine = ChatThreadEngine(store, AIProfileRouter(model_client, max_history=3), quota)
    ticket = await open_ticket()
    for i in range(3):
        await engine.append_inbound_message(COMPANY_ID, ticket.id, SenderRole.USER, f"message {i}")

    request = model_client.generate.await_args.args[0]
    assert len(request.conversation) == 3
    assert request.conversation[-1].text == "message 2"


@pytest.mark.asyncio
async def test_delete_ticket(engine, store, open_ticket):
    ticket = await open_ticket()

    await engine.delete_ticket(COMPANY_ID, ticket.id)

    assert await store.list_tickets(COMPANY_ID) == []


@pytest.mark.asyncio
async def test_assignment_rejects_agent_from_another_company(engine, store, open_ticket):
    await store.add_user(LAW_FIRM_ID, "paralegal-1", UserRole.AGENT)
    await store.add_user(COMPANY_ID, "customer-9", UserRole.USER)
    ticket = await open_ticket()

    for agent_id in ("paralegal-1", "customer-9", "nobody"):
        with pytest.raises(UnknownAgentError):
            await engine.assign_agent(COMPANY_ID, ticket.id, agent_id)

    assert (await store.get_ticket(COMPANY_ID, ticket.id)).assigned_agent_id is None


@pytest.mark.asyncio
async def test_ticket_from_chat_uses_draft(store, router, quota):
    drafter_client = AsyncMock(spec=ModelClient)
    drafter_client.generate.return_value = model_json_draft(
        title="VPN drops every hour", category="ticketCategory.Network", priority="high"
    )
    engine = ChatThreadEngine(store, router, quota, drafter=TicketDrafter(drafter_client, timeout_seconds=1))
    history = [
        ChatMessage(sender=SenderRole.USER, text="My VPN keeps disconnecting"),
        ChatMessage(sender=SenderRole.AI, text="Does it happen at a fixed interval?"),
        ChatMessage(sender=SenderRole.USER, text="Every hour or so"),
    ]

    creation = await engine.create_ticket_from_chat(
        COMPANY_ID, "user-1", history, ["ticketCategory.Network", "ticketCategory.Hardware"], language="en"
    )

    assert creation.created
    ticket = creation.ticket
    assert ticket.title == "VPN drops every hour"
    assert ticket.category == "ticketCategory.Network"
    assert ticket.priority == TicketPriority.HIGH
    assert [m.text for m in ticket.chat_history] == [m.text for m in history]
    request = drafter_client.generate.await_args.args[0]
    assert request.conversation[-1].role == "user"
    assert "ticketCategory.Network, ticketCategory.Hardware" in request.system_instruction


@pytest.mark.asyncio
async def test_ticket_from_chat_respects_quota(store, router, quota, plan_overrides):
    plan_overrides[FREEMIUM_COMPANY_ID] = PLAN_LIMITS[PlanTier.FREEMIUM].model_copy(
        update={"max_tickets_per_month": 0}
    )
    drafter_client = AsyncMock(spec=ModelClient)
    engine = ChatThreadEngine(store, router, quota, drafter=TicketDrafter(drafter_client))

    creation = await engine.create_ticket_from_chat(
        FREEMIUM_COMPANY_ID, "user-1", [ChatMessage(sender=SenderRole.USER, text="help")], []
    )

    assert creation.created is False
    drafter_client.generate.assert_not_called()
    assert await store.list_tickets(FREEMIUM_COMPANY_ID) == []
