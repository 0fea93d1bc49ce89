from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class PlanTier(str, Enum):
    FREEMIUM = "freemium"
    STANDARD = "standard"
    PRO = "pro"


class Feature(str, Enum):
    VOICE = "voice"
    APPOINTMENT_SCHEDULING = "appointment_scheduling"
    ADVANCED_REPORTS = "advanced_reports"
    PRIORITY_SUPPORT = "priority_support"
    INTERNAL_NOTES = "internal_notes"
    TICKET_ASSIGNMENT = "ticket_assignment"
    ADVANCED_TICKET_MANAGEMENT = "advanced_ticket_management"


class PlanLimits(BaseModel):
    tier: PlanTier
    max_agents: Optional[int] = None  # None means unlimited
    max_tickets_per_month: Optional[int] = None
    has_unlimited_tickets: bool = False
    ai_level: int = Field(default=1, ge=1, le=2)
    feature_flags: dict[str, bool] = Field(default_factory=dict)


PLAN_LIMITS: dict[PlanTier, PlanLimits] = {
    PlanTier.FREEMIUM: PlanLimits(
        tier=PlanTier.FREEMIUM,
        max_agents=5,
        max_tickets_per_month=1000,
        has_unlimited_tickets=False,
        ai_level=1,
        feature_flags={
            Feature.VOICE.value: False,
            Feature.APPOINTMENT_SCHEDULING.value: False,
            Feature.ADVANCED_REPORTS.value: False,
            Feature.PRIORITY_SUPPORT.value: False,
            Feature.INTERNAL_NOTES.value: True,
            Feature.TICKET_ASSIGNMENT.value: True,
            Feature.ADVANCED_TICKET_MANAGEMENT.value: True,
        },
    ),
    PlanTier.STANDARD: PlanLimits(
        tier=PlanTier.STANDARD,
        has_unlimited_tickets=True,
        ai_level=1,
        feature_flags={
            Feature.VOICE.value: True,
            Feature.APPOINTMENT_SCHEDULING.value: True,
            Feature.ADVANCED_REPORTS.value: False,
            Feature.PRIORITY_SUPPORT.value: True,
            Feature.INTERNAL_NOTES.value: True,
            Feature.TICKET_ASSIGNMENT.value: True,
            Feature.ADVANCED_TICKET_MANAGEMENT.value: True,
        },
    ),
    PlanTier.PRO: PlanLimits(
        tier=PlanTier.PRO,
        has_unlimited_tickets=True,
        ai_level=2,
        feature_flags={feature.value: True for feature in Feature},
    ),
}


class CompanyAISettings(BaseModel):
    ai_profile_key: Optional[str] = None
    system_prompt_override: Optional[str] = None
    extra_context: Optional[Any] = None


class Company(BaseModel):
    id: str
    name: str
    plan: PlanTier = PlanTier.FREEMIUM
    ai_settings: Optional[CompanyAISettings] = None


class UsageCounters(BaseModel):
    agent_count: int = 0
    tickets_this_month: int = 0
