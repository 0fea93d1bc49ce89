import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from nexus_desk.models.plan import Feature, PlanLimits, UsageCounters
from nexus_desk.models.ticket import UserRole

logger = logging.getLogger(__name__)

QUOTA_ROLES = (UserRole.AGENT, UserRole.MANAGER)


@dataclass
class QuotaDecision:
    allowed: bool
    reason: Optional[str] = None


def month_start(now: datetime, tz_name: str = "UTC") -> datetime:
    """First instant of the calendar month containing ``now`` in ``tz_name``, as UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(ZoneInfo(tz_name))
    start = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return start.astimezone(timezone.utc)


class PlanQuotaGuard:
    def check_ticket_creation(self, plan: PlanLimits, usage: UsageCounters) -> QuotaDecision:
        if plan.has_unlimited_tickets or plan.max_tickets_per_month is None:
            return QuotaDecision(allowed=True)

        if usage.tickets_this_month >= plan.max_tickets_per_month:
            return QuotaDecision(
                allowed=False,
                reason=(
                    f"Monthly ticket limit reached ({plan.max_tickets_per_month}) "
                    f"for the {plan.tier.value} plan"
                ),
            )
        return QuotaDecision(allowed=True)

    def check_agent_addition(self, plan: PlanLimits, usage: UsageCounters) -> QuotaDecision:
        if plan.max_agents is None:
            return QuotaDecision(allowed=True)

        if usage.agent_count >= plan.max_agents:
            return QuotaDecision(
                allowed=False,
                reason=f"Agent limit reached ({plan.max_agents}) for the {plan.tier.value} plan",
            )
        return QuotaDecision(allowed=True)

    def check_feature(self, plan: PlanLimits, feature: Feature | str) -> bool:
        key = feature.value if isinstance(feature, Feature) else feature
        return plan.feature_flags.get(key, False) is True


class QuotaService:
    """Reads usage counters fresh from the store right before each guarded decision."""

    def __init__(self, store, plans, guard: PlanQuotaGuard | None = None, tz_name: str = "UTC", clock=None):
        self.store = store
        self.plans = plans
        self.guard = guard or PlanQuotaGuard()
        self.tz_name = tz_name
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def current_usage(self, company_id: str) -> UsageCounters:
        since = month_start(self.clock(), self.tz_name)
        tickets = await self.store.count_tickets_since(company_id, since)
        agents = 0
        for role in QUOTA_ROLES:
            agents += await self.store.count_users_by_role(company_id, role)
        return UsageCounters(agent_count=agents, tickets_this_month=tickets)

    async def check_ticket_creation(self, company_id: str) -> QuotaDecision:
        plan = await self.plans.get_plan(company_id)
        decision = self.guard.check_ticket_creation(plan, await self.current_usage(company_id))
        if not decision.allowed:
            logger.info("Ticket creation denied for company %s: %s", company_id, decision.reason)
        return decision

    async def check_agent_addition(self, company_id: str) -> QuotaDecision:
        plan = await self.plans.get_plan(company_id)
        decision = self.guard.check_agent_addition(plan, await self.current_usage(company_id))
        if not decision.allowed:
            logger.info("Agent addition denied for company %s: %s", company_id, decision.reason)
        return decision

    async def add_member(self, company_id: str, user_id: str, role: UserRole) -> QuotaDecision:
        """Add a user to the company. Agents and managers count against the plan's agent cap,
        and nothing is written when the cap is reached."""
        decision = QuotaDecision(allowed=True)
        if role in QUOTA_ROLES:
            decision = await self.check_agent_addition(company_id)
            if not decision.allowed:
                return decision

        await self.store.add_user(company_id, user_id, role)
        logger.info("User %s added to company %s as %s", user_id, company_id, role.value)
        return decision

    async def check_feature(self, company_id: str, feature: Feature | str) -> bool:
        plan = await self.plans.get_plan(company_id)
        return self.guard.check_feature(plan, feature)
