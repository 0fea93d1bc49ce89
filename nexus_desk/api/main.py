from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

import anthropic
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from nexus_desk import __version__
from nexus_desk.agents import AIProfileRouter, AnthropicModelClient, TicketDrafter, TicketSummarizer
from nexus_desk.config import Settings, configure_logging, get_settings
from nexus_desk.errors import (
    ConcurrentModificationError,
    DuplicateUserError,
    FeatureNotAvailableError,
    NexusDeskError,
    TenantIsolationError,
    TicketNotFoundError,
    UnknownAgentError,
)
from nexus_desk.knowledge import KnowledgeBase
from nexus_desk.models.database import create_engine, create_session_factory, init_db
from nexus_desk.models.ticket import (
    AppointmentDetails,
    ChatMessage,
    Party,
    SenderRole,
    TicketCreate,
    TicketStatus,
    UserRole,
)
from nexus_desk.services import (
    AppointmentNegotiator,
    AppointmentOutcome,
    ChatThreadEngine,
    CompanyPlanProvider,
    QuotaService,
    SqlAlchemyTicketStore,
    TicketStore,
    UndoTimerRegistry,
)


@dataclass
class Services:
    store: TicketStore
    quota: QuotaService
    engine: ChatThreadEngine
    negotiator: AppointmentNegotiator


def build_services(
    store: TicketStore,
    router: AIProfileRouter,
    summarizer: Optional[TicketSummarizer] = None,
    settings: Optional[Settings] = None,
    drafter: Optional[TicketDrafter] = None,
) -> Services:
    settings = settings or get_settings()
    quota = QuotaService(store, CompanyPlanProvider(store), tz_name=settings.quota_timezone)
    engine = ChatThreadEngine(
        store,
        router,
        quota,
        summarizer=summarizer,
        drafter=drafter,
        default_language=settings.default_language,
    )
    negotiator = AppointmentNegotiator(
        engine,
        quota,
        UndoTimerRegistry(settings.undo_window_seconds),
        default_language=settings.default_language,
    )
    return Services(store=store, quota=quota, engine=engine, negotiator=negotiator)


services: Optional[Services] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global services

    settings = get_settings()
    configure_logging(settings.log_level)

    db_engine = create_engine(settings.database_url)
    await init_db(db_engine)
    store = SqlAlchemyTicketStore(create_session_factory(db_engine))

    client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
    model_client = AnthropicModelClient(client, model=settings.ai_model, max_tokens=settings.ai_max_tokens)
    knowledge_base = KnowledgeBase(persist_directory=settings.chroma_persist_dir)

    services = build_services(
        store,
        AIProfileRouter(model_client, knowledge_base=knowledge_base),
        TicketSummarizer(model_client),
        settings,
        drafter=TicketDrafter(model_client),
    )

    yield

    await db_engine.dispose()


app = FastAPI(
    title="Nexus Desk",
    description="Multi-tenant help desk ticket engine with AI first response and appointment negotiation",
    version=__version__,
    lifespan=lifespan,
)


def get_services() -> Services:
    if services is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return services


def company_id_header(x_company_id: str = Header(...)) -> str:
    return x_company_id


ERROR_STATUS = {
    TenantIsolationError: 403,
    TicketNotFoundError: 404,
    UnknownAgentError: 404,
    DuplicateUserError: 409,
    ConcurrentModificationError: 409,
    FeatureNotAvailableError: 402,
}


@app.exception_handler(NexusDeskError)
async def nexus_desk_error_handler(request: Request, exc: NexusDeskError):
    status_code = next((code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 400)
    # do not reveal whether a foreign ticket exists
    detail = "Ticket not found" if isinstance(exc, TenantIsolationError) else str(exc)
    return JSONResponse(status_code=status_code, content={"detail": detail})


class MessageRequest(BaseModel):
    sender: SenderRole
    text: str
    agent_id: Optional[str] = None
    language: Optional[str] = None


class MessageResponse(BaseModel):
    ticket: dict[str, Any]
    ai_invoked: bool
    escalation_suggested: bool


class AssignRequest(BaseModel):
    agent_id: Optional[str] = None
    language: Optional[str] = None


class StatusRequest(BaseModel):
    status: TicketStatus


class ProposeRequest(BaseModel):
    date: str
    time: str
    location: str
    proposed_by: Party = Party.AGENT
    agent_id: Optional[str] = None
    notes: Optional[str] = None
    language: Optional[str] = None


class ActorRequest(BaseModel):
    actor: Party
    appointment_id: Optional[str] = None
    agent_id: Optional[str] = None
    language: Optional[str] = None


class AlternativeRequest(ActorRequest):
    date: str
    time: str
    location: str
    notes: Optional[str] = None


class RestoreRequest(BaseModel):
    snapshot: Optional[AppointmentDetails] = None
    actor: Party = Party.AGENT
    agent_id: Optional[str] = None
    language: Optional[str] = None


class MemberRequest(BaseModel):
    user_id: str
    role: UserRole = UserRole.AGENT


class ChatTicketRequest(BaseModel):
    user_id: str
    chat_history: list[ChatMessage]
    valid_categories: list[str] = []
    language: Optional[str] = None


class QuotaStatus(BaseModel):
    plan: str
    agent_count: int
    tickets_this_month: int
    can_create_ticket: bool
    can_add_agent: bool
    feature_flags: dict[str, bool]


def appointment_response(outcome: AppointmentOutcome) -> dict[str, Any]:
    if not outcome.ok:
        raise HTTPException(status_code=402 if outcome.plan_denied else 409, detail=outcome.reason)
    return {
        "ticket": outcome.ticket.public_view(),
        "appointment": outcome.appointment.model_dump(mode="json") if outcome.appointment else None,
        "snapshot": outcome.snapshot.model_dump(mode="json") if outcome.snapshot else None,
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": __version__}


@app.get("/quota", response_model=QuotaStatus)
async def quota_status(
    company_id: str = Depends(company_id_header),
    svc: Services = Depends(get_services),
):
    plan = await svc.quota.plans.get_plan(company_id)
    usage = await svc.quota.current_usage(company_id)
    return QuotaStatus(
        plan=plan.tier.value,
        agent_count=usage.agent_count,
        tickets_this_month=usage.tickets_this_month,
        can_create_ticket=svc.quota.guard.check_ticket_creation(plan, usage).allowed,
        can_add_agent=svc.quota.guard.check_agent_addition(plan, usage).allowed,
        feature_flags=plan.feature_flags,
    )


@app.post("/tickets", status_code=201)
async def create_ticket(
    ticket_data: TicketCreate,
    company_id: str = Depends(company_id_header),
    svc: Services = Depends(get_services),
):
    creation = await svc.engine.create_ticket(company_id, ticket_data)
    if not creation.created:
        raise HTTPException(status_code=402, detail=creation.decision.reason)
    return creation.ticket.public_view()


@app.post("/members", status_code=201)
async def add_member(
    request: MemberRequest,
    company_id: str = Depends(company_id_header),
    svc: Services = Depends(get_services),
):
    decision = await svc.quota.add_member(company_id, request.user_id, request.role)
    if not decision.allowed:
        raise HTTPException(status_code=402, detail=decision.reason)
    return {"user_id": request.user_id, "company_id": company_id, "role": request.role.value}


@app.post("/tickets/from-chat", status_code=201)
async def create_ticket_from_chat(
    request: ChatTicketRequest,
    company_id: str = Depends(company_id_header),
    svc: Services = Depends(get_services),
):
    creation = await svc.engine.create_ticket_from_chat(
        company_id,
        request.user_id,
        request.chat_history,
        request.valid_categories,
        language=request.language,
    )
    if not creation.created:
        raise HTTPException(status_code=402, detail=creation.decision.reason)
    return creation.ticket.public_view()


@app.get("/tickets")
async def list_tickets(
    status: Optional[TicketStatus] = None,
    assigned_agent_id: Optional[str] = None,
    company_id: str = Depends(company_id_header),
    svc: Services = Depends(get_services),
):
    tickets = await svc.store.list_tickets(company_id, status=status, assigned_agent_id=assigned_agent_id)
    return [t.public_view() for t in tickets]


@app.get("/tickets/{ticket_id}")
async def get_ticket(
    ticket_id: str,
    include_internal: bool = False,
    company_id: str = Depends(company_id_header),
    svc: Services = Depends(get_services),
):
    ticket = await svc.store.get_ticket(company_id, ticket_id)
    if include_internal:
        return ticket.model_dump(mode="json")
    return ticket.public_view()


@app.post("/tickets/{ticket_id}/messages", response_model=MessageResponse)
async def post_message(
    ticket_id: str,
    request: MessageRequest,
    company_id: str = Depends(company_id_header),
    svc: Services = Depends(get_services),
):
    if request.sender not in (SenderRole.USER, SenderRole.AGENT):
        raise HTTPException(status_code=422, detail="Only users and agents can post messages")

    result = await svc.engine.append_inbound_message(
        company_id,
        ticket_id,
        request.sender,
        request.text,
        agent_id=request.agent_id,
        language=request.language,
    )
    return MessageResponse(
        ticket=result.ticket.public_view(),
        ai_invoked=result.ai_invoked,
        escalation_suggested=result.escalation_suggested,
    )


@app.post("/tickets/{ticket_id}/assign")
async def assign_ticket(
    ticket_id: str,
    request: AssignRequest,
    company_id: str = Depends(company_id_header),
    svc: Services = Depends(get_services),
):
    ticket = await svc.engine.assign_agent(company_id, ticket_id, request.agent_id, request.language)
    return ticket.public_view()


@app.patch("/tickets/{ticket_id}/status")
async def update_status(
    ticket_id: str,
    request: StatusRequest,
    company_id: str = Depends(company_id_header),
    svc: Services = Depends(get_services),
):
    ticket = await svc.engine.update_status(company_id, ticket_id, request.status)
    return ticket.public_view()


@app.delete("/tickets/{ticket_id}", status_code=204)
async def delete_ticket(
    ticket_id: str,
    company_id: str = Depends(company_id_header),
    svc: Services = Depends(get_services),
):
    await svc.engine.delete_ticket(company_id, ticket_id)


@app.post("/tickets/{ticket_id}/appointment")
async def propose_appointment(
    ticket_id: str,
    request: ProposeRequest,
    company_id: str = Depends(company_id_header),
    svc: Services = Depends(get_services),
):
    outcome = await svc.negotiator.propose(
        company_id,
        ticket_id,
        request.date,
        request.time,
        request.location,
        proposed_by=request.proposed_by,
        agent_id=request.agent_id,
        notes=request.notes,
        language=request.language,
    )
    return appointment_response(outcome)


@app.post("/tickets/{ticket_id}/appointment/accept")
async def accept_appointment(
    ticket_id: str,
    request: ActorRequest,
    company_id: str = Depends(company_id_header),
    svc: Services = Depends(get_services),
):
    outcome = await svc.negotiator.accept(
        company_id,
        ticket_id,
        request.actor,
        appointment_id=request.appointment_id,
        agent_id=request.agent_id,
        language=request.language,
    )
    return appointment_response(outcome)


@app.post("/tickets/{ticket_id}/appointment/alternative")
async def propose_alternative(
    ticket_id: str,
    request: AlternativeRequest,
    company_id: str = Depends(company_id_header),
    svc: Services = Depends(get_services),
):
    outcome = await svc.negotiator.propose_alternative(
        company_id,
        ticket_id,
        request.actor,
        request.date,
        request.time,
        request.location,
        appointment_id=request.appointment_id,
        agent_id=request.agent_id,
        notes=request.notes,
        language=request.language,
    )
    return appointment_response(outcome)


@app.post("/tickets/{ticket_id}/appointment/cancel")
async def cancel_appointment(
    ticket_id: str,
    request: ActorRequest,
    company_id: str = Depends(company_id_header),
    svc: Services = Depends(get_services),
):
    outcome = await svc.negotiator.cancel(
        company_id,
        ticket_id,
        request.actor,
        appointment_id=request.appointment_id,
        agent_id=request.agent_id,
        language=request.language,
    )
    return appointment_response(outcome)


@app.delete("/tickets/{ticket_id}/appointment/{appointment_id}")
async def delete_appointment(
    ticket_id: str,
    appointment_id: str,
    actor: Party = Party.AGENT,
    agent_id: Optional[str] = None,
    language: Optional[str] = None,
    company_id: str = Depends(company_id_header),
    svc: Services = Depends(get_services),
):
    outcome = await svc.negotiator.delete(
        company_id,
        ticket_id,
        appointment_id,
        actor=actor,
        agent_id=agent_id,
        language=language,
    )
    return appointment_response(outcome)


@app.post("/tickets/{ticket_id}/appointment/restore")
async def restore_appointment(
    ticket_id: str,
    request: RestoreRequest,
    company_id: str = Depends(company_id_header),
    svc: Services = Depends(get_services),
):
    outcome = await svc.negotiator.restore(
        company_id,
        ticket_id,
        snapshot=request.snapshot,
        actor=request.actor,
        agent_id=request.agent_id,
        language=request.language,
    )
    return appointment_response(outcome)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
