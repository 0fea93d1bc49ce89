from .plan import PLAN_LIMITS, Company, CompanyAISettings, Feature, PlanLimits, PlanTier, UsageCounters
from .ticket import (
    AppointmentDetails,
    AppointmentStatus,
    ChatMessage,
    InternalNote,
    Party,
    SenderRole,
    Ticket,
    TicketCreate,
    TicketPriority,
    TicketStatus,
    UserRole,
)

__all__ = [
    "PLAN_LIMITS",
    "AppointmentDetails",
    "AppointmentStatus",
    "ChatMessage",
    "Company",
    "CompanyAISettings",
    "Feature",
    "InternalNote",
    "Party",
    "PlanLimits",
    "PlanTier",
    "SenderRole",
    "Ticket",
    "TicketCreate",
    "TicketPriority",
    "TicketStatus",
    "UsageCounters",
    "UserRole",
]
