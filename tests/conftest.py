import json
from unittest.mock import AsyncMock

import pytest

from nexus_desk.agents.model_client import ModelClient
from nexus_desk.agents.profiles import AIProfileRouter
from nexus_desk.models.plan import Company, PlanTier
from nexus_desk.models.ticket import TicketCreate, UserRole
from nexus_desk.services import (
    ChatThreadEngine,
    CompanyPlanProvider,
    InMemoryTicketStore,
    QuotaService,
)

COMPANY_ID = "acme"
FREEMIUM_COMPANY_ID = "globex"
LAW_FIRM_ID = "lai-turner-llp"
AGENT_IDS = ("agent-1", "agent-2", "agent-7")


def model_json(text: str, escalation: bool = False, **extra) -> str:
    return json.dumps({"responseText": text, "escalationSuggested": escalation, **extra})


def model_json_draft(
    title: str = "Printer offline on floor 2",
    description: str = "The user reports the printer is offline.",
    category: str = "ticketCategory.Hardware",
    priority: str = "Medium",
) -> str:
    return json.dumps({"title": title, "description": description, "category": category, "priority": priority})


@pytest.fixture
def store():
    store = InMemoryTicketStore()
    store.add_company(Company(id=COMPANY_ID, name="Acme Corp", plan=PlanTier.STANDARD))
    store.add_company(Company(id=FREEMIUM_COMPANY_ID, name="Globex", plan=PlanTier.FREEMIUM))
    store.add_company(Company(id=LAW_FIRM_ID, name="Lai & Turner Law Firm", plan=PlanTier.PRO))
    for agent_id in AGENT_IDS:
        store.users[agent_id] = (COMPANY_ID, UserRole.AGENT)
    return store


@pytest.fixture
def model_client():
    client = AsyncMock(spec=ModelClient)
    client.generate.return_value = model_json("Have you tried restarting the printer?")
    return client


@pytest.fixture
def router(model_client):
    return AIProfileRouter(model_client, timeout_seconds=1.0, max_history=50)


@pytest.fixture
def plan_overrides():
    return {}


@pytest.fixture
def quota(store, plan_overrides):
    return QuotaService(store, CompanyPlanProvider(store, plan_overrides))


@pytest.fixture
def engine(store, router, quota):
    return ChatThreadEngine(store, router, quota)


@pytest.fixture
def open_ticket(engine):
    async def _open(company_id: str = COMPANY_ID, title: str = "Printer offline", **fields):
        creation = await engine.create_ticket(
            company_id,
            TicketCreate(user_id=fields.pop("user_id", "user-1"), title=title, **fields),
        )
        assert creation.created, creation.decision.reason
        return creation.ticket

    return _open
