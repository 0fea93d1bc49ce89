from .appointments import AppointmentNegotiator, AppointmentOutcome
from .chat_thread import AppendResult, ChatThreadEngine, TicketCreation, next_status
from .plan_quota import PlanQuotaGuard, QuotaDecision, QuotaService, month_start
from .sql_ticket_store import SqlAlchemyTicketStore
from .ticket_store import CompanyPlanProvider, InMemoryTicketStore, PlanProvider, TicketStore
from .undo_timer import UndoTimerRegistry

__all__ = [
    "AppendResult",
    "AppointmentNegotiator",
    "AppointmentOutcome",
    "ChatThreadEngine",
    "CompanyPlanProvider",
    "InMemoryTicketStore",
    "PlanProvider",
    "PlanQuotaGuard",
    "QuotaDecision",
    "QuotaService",
    "SqlAlchemyTicketStore",
    "TicketCreation",
    "TicketStore",
    "UndoTimerRegistry",
    "month_start",
    "next_status",
]
