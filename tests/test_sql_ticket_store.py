import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy.pool import StaticPool

from nexus_desk.errors import ConcurrentModificationError, DuplicateUserError, TenantIsolationError
from nexus_desk.models.database import create_engine, create_session_factory, init_db
from nexus_desk.models.plan import Company, CompanyAISettings, PlanTier
from nexus_desk.models.ticket import (
    AppointmentDetails,
    AppointmentStatus,
    ChatMessage,
    InternalNote,
    Party,
    SenderRole,
    Ticket,
    UserRole,
)
from nexus_desk.services import SqlAlchemyTicketStore


async def make_store(database_url: str | None = None) -> SqlAlchemyTicketStore:
    if database_url is None:
        engine = create_engine("sqlite+aiosqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(database_url)
    await init_db(engine)
    store = SqlAlchemyTicketStore(create_session_factory(engine))
    await store.add_company(Company(
        id="acme",
        name="Acme Corp",
        plan=PlanTier.PRO,
        ai_settings=CompanyAISettings(ai_profile_key="default-nexus-it", extra_context={"site": "Lyon"}),
    ))
    await store.add_company(Company(id="globex", name="Globex"))
    return store


def full_ticket() -> Ticket:
    appointment = AppointmentDetails(
        proposed_by=Party.AGENT,
        proposed_date="2024-06-03",
        proposed_time="14:30",
        location_or_method="Zoom",
        status=AppointmentStatus.PENDING_USER_APPROVAL,
    ).supersede(status=AppointmentStatus.CONFIRMED)
    return Ticket(
        company_id="acme",
        user_id="user-1",
        title="Screen flickers",
        chat_history=[
            ChatMessage(sender=SenderRole.USER, text="It flickers"),
            ChatMessage(sender=SenderRole.AI, text="Check the cable", ai_profile_key="default-nexus-it"),
        ],
        internal_notes=[InternalNote(text="Known batch issue", agent_id="agent-1")],
        current_appointment=appointment,
        metadata={"workstation_id": "WS-42"},
    )


@pytest.mark.asyncio
async def test_ticket_aggregate_survives_storage():
    store = await make_store()
    ticket = full_ticket()

    await store.create_ticket(ticket)
    loaded = await store.get_ticket("acme", ticket.id)

    assert loaded == ticket
    assert loaded.current_appointment.history[0].status == AppointmentStatus.PENDING_USER_APPROVAL
    assert loaded.created_at.tzinfo is not None


@pytest.mark.asyncio
async def test_company_settings_loaded():
    store = await make_store()

    company = await store.get_company("acme")

    assert company.plan == PlanTier.PRO
    assert company.ai_settings.extra_context == {"site": "Lyon"}
    assert await store.get_company("missing") is None


@pytest.mark.asyncio
async def test_sql_tenant_isolation():
    store = await make_store()
    ticket = await store.create_ticket(full_ticket())

    with pytest.raises(TenantIsolationError):
        await store.get_ticket("globex", ticket.id)
    with pytest.raises(TenantIsolationError):
        await store.update_ticket("globex", ticket.id, {"title": "x"})
    assert await store.list_tickets("globex") == []


@pytest.mark.asyncio
async def test_sql_optimistic_concurrency():
    store = await make_store()
    ticket = await store.create_ticket(full_ticket())

    updated = await store.update_ticket("acme", ticket.id, {"assigned_agent_id": "agent-9"}, expected_version=0)
    assert updated.version == 1

    with pytest.raises(ConcurrentModificationError):
        await store.update_ticket("acme", ticket.id, {"assigned_agent_id": None}, expected_version=0)

    listed = await store.list_tickets("acme", assigned_agent_id="agent-9")
    assert [t.id for t in listed] == [ticket.id]


@pytest.mark.asyncio
async def test_sql_counters():
    store = await make_store()
    await store.add_user("acme", "a1", UserRole.AGENT)
    await store.add_user("acme", "m1", UserRole.MANAGER)
    await store.add_user("acme", "u1", UserRole.USER)
    await store.create_ticket(Ticket(
        company_id="acme", user_id="u1", title="old",
        created_at=datetime(2024, 1, 31, 23, 0, tzinfo=timezone.utc),
    ))
    await store.create_ticket(Ticket(
        company_id="acme", user_id="u1", title="new",
        created_at=datetime(2024, 2, 1, 0, 0, tzinfo=timezone.utc),
    ))

    assert await store.count_users_by_role("acme", UserRole.AGENT) == 1
    assert await store.count_users_by_role("acme", UserRole.MANAGER) == 1
    assert await store.count_tickets_since("acme", datetime(2024, 2, 1, tzinfo=timezone.utc)) == 1


@pytest.mark.asyncio
async def test_sql_delete():
    store = await make_store()
    ticket = await store.create_ticket(full_ticket())

    await store.delete_ticket("acme", ticket.id)

    assert await store.list_tickets("acme") == []


@pytest.mark.asyncio
async def test_sql_concurrent_writers_at_same_version(tmp_path):
    store = await make_store(f"sqlite+aiosqlite:///{tmp_path / 'tickets.db'}")
    ticket = await store.create_ticket(Ticket(company_id="acme", user_id="u1", title="Printer offline"))
    ai_reply = ChatMessage(sender=SenderRole.AI, text="Try turning it off and on")

    results = await asyncio.gather(
        store.update_ticket("acme", ticket.id, {"assigned_agent_id": "agent-7"}, expected_version=0),
        store.update_ticket("acme", ticket.id, {"chat_history": [ai_reply]}, expected_version=0),
        return_exceptions=True,
    )

    assert sum(isinstance(r, Ticket) for r in results) == 1
    assert sum(isinstance(r, ConcurrentModificationError) for r in results) == 1
    stored = await store.get_ticket("acme", ticket.id)
    assert stored.version == 1
    # never both: an AI message on a ticket a human already took
    assert not (stored.assigned_agent_id and stored.chat_history)


@pytest.mark.asyncio
async def test_sql_unversioned_writers_both_land(tmp_path):
    store = await make_store(f"sqlite+aiosqlite:///{tmp_path / 'tickets.db'}")
    ticket = await store.create_ticket(Ticket(company_id="acme", user_id="u1", title="Printer offline"))

    await asyncio.gather(
        store.update_ticket("acme", ticket.id, {"assigned_agent_id": "agent-7"}),
        store.update_ticket("acme", ticket.id, {"summary": "Printer offline since Monday"}),
    )

    stored = await store.get_ticket("acme", ticket.id)
    assert stored.version == 2


@pytest.mark.asyncio
async def test_sql_membership():
    store = await make_store()
    await store.add_user("acme", "agent-1", UserRole.AGENT)

    assert await store.get_user_role("acme", "agent-1") == UserRole.AGENT
    assert await store.get_user_role("globex", "agent-1") is None
    with pytest.raises(DuplicateUserError):
        await store.add_user("globex", "agent-1", UserRole.AGENT)
