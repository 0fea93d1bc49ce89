import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from nexus_desk.errors import (
    ConcurrentModificationError,
    DuplicateUserError,
    TenantIsolationError,
    TicketNotFoundError,
)
from nexus_desk.models.plan import PLAN_LIMITS, Company, PlanLimits, PlanTier
from nexus_desk.models.ticket import Ticket, TicketStatus, UserRole, utcnow

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = frozenset({"id", "company_id", "created_at", "version"})


def validate_patch(patch: dict[str, Any]) -> None:
    unknown = set(patch) - set(Ticket.model_fields)
    if unknown:
        raise ValueError(f"Unknown ticket fields in patch: {sorted(unknown)}")
    frozen = set(patch) & IMMUTABLE_FIELDS
    if frozen:
        raise ValueError(f"Ticket fields cannot be patched: {sorted(frozen)}")


class TicketStore(ABC):
    """Tenant-scoped storage contract. Every call names the caller's company."""

    @abstractmethod
    async def get_company(self, company_id: str) -> Optional[Company]:
        pass

    @abstractmethod
    async def get_ticket(self, company_id: str, ticket_id: str) -> Ticket:
        pass

    @abstractmethod
    async def list_tickets(
        self,
        company_id: str,
        status: Optional[TicketStatus] = None,
        assigned_agent_id: Optional[str] = None,
    ) -> list[Ticket]:
        pass

    @abstractmethod
    async def create_ticket(self, ticket: Ticket) -> Ticket:
        pass

    @abstractmethod
    async def update_ticket(
        self,
        company_id: str,
        ticket_id: str,
        patch: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Ticket:
        pass

    @abstractmethod
    async def delete_ticket(self, company_id: str, ticket_id: str) -> None:
        pass

    @abstractmethod
    async def add_user(self, company_id: str, user_id: str, role: UserRole) -> None:
        pass

    @abstractmethod
    async def get_user_role(self, company_id: str, user_id: str) -> Optional[UserRole]:
        """Role of ``user_id`` inside ``company_id``, or None if the user is not a member."""
        pass

    @abstractmethod
    async def count_users_by_role(self, company_id: str, role: UserRole) -> int:
        pass

    @abstractmethod
    async def count_tickets_since(self, company_id: str, since: datetime) -> int:
        pass


class PlanProvider(ABC):
    @abstractmethod
    async def get_plan(self, company_id: str) -> PlanLimits:
        pass


class CompanyPlanProvider(PlanProvider):
    def __init__(self, store: TicketStore, overrides: Optional[dict[str, PlanLimits]] = None):
        self.store = store
        self.overrides = overrides if overrides is not None else {}

    async def get_plan(self, company_id: str) -> PlanLimits:
        if company_id in self.overrides:
            return self.overrides[company_id]
        company = await self.store.get_company(company_id)
        tier = company.plan if company else PlanTier.FREEMIUM
        return PLAN_LIMITS[tier]


class InMemoryTicketStore(TicketStore):
    def __init__(self):
        self.companies: dict[str, Company] = {}
        self.users: dict[str, tuple[str, UserRole]] = {}
        self._tickets: dict[str, Ticket] = {}
        self._owners: dict[str, str] = {}

    def add_company(self, company: Company) -> Company:
        self.companies[company.id] = company
        return company

    async def add_user(self, company_id: str, user_id: str, role: UserRole) -> None:
        if user_id in self.users:
            raise DuplicateUserError(user_id)
        self.users[user_id] = (company_id, role)

    async def get_user_role(self, company_id: str, user_id: str) -> Optional[UserRole]:
        owner, role = self.users.get(user_id, (None, None))
        return role if owner == company_id else None

    def _check_owner(self, company_id: str, ticket_id: str) -> None:
        owner = self._owners.get(ticket_id)
        if owner is None:
            raise TicketNotFoundError(ticket_id)
        if owner != company_id:
            logger.warning("Cross-tenant access to ticket %s rejected for company %s", ticket_id, company_id)
            raise TenantIsolationError(company_id, ticket_id)

    async def get_company(self, company_id: str) -> Optional[Company]:
        company = self.companies.get(company_id)
        return company.model_copy(deep=True) if company else None

    async def get_ticket(self, company_id: str, ticket_id: str) -> Ticket:
        self._check_owner(company_id, ticket_id)
        return self._tickets[ticket_id].model_copy(deep=True)

    async def list_tickets(
        self,
        company_id: str,
        status: Optional[TicketStatus] = None,
        assigned_agent_id: Optional[str] = None,
    ) -> list[Ticket]:
        tickets = [
            self._tickets[ticket_id]
            for ticket_id, owner in self._owners.items()
            if owner == company_id
        ]
        if status is not None:
            tickets = [t for t in tickets if t.status == status]
        if assigned_agent_id is not None:
            tickets = [t for t in tickets if t.assigned_agent_id == assigned_agent_id]
        return [t.model_copy(deep=True) for t in sorted(tickets, key=lambda t: t.created_at)]

    async def create_ticket(self, ticket: Ticket) -> Ticket:
        if ticket.id in self._tickets:
            raise ValueError(f"Ticket {ticket.id} already exists")
        stored = ticket.model_copy(deep=True)
        self._tickets[stored.id] = stored
        self._owners[stored.id] = stored.company_id
        return stored.model_copy(deep=True)

    async def update_ticket(
        self,
        company_id: str,
        ticket_id: str,
        patch: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Ticket:
        validate_patch(patch)
        self._check_owner(company_id, ticket_id)
        current = self._tickets[ticket_id]
        if expected_version is not None and current.version != expected_version:
            raise ConcurrentModificationError(ticket_id, expected_version, current.version)

        updated = Ticket.model_validate({
            **current.model_dump(),
            **patch,
            "updated_at": utcnow(),
            "version": current.version + 1,
        }).model_copy(deep=True)
        self._tickets[ticket_id] = updated
        return updated.model_copy(deep=True)

    async def delete_ticket(self, company_id: str, ticket_id: str) -> None:
        self._check_owner(company_id, ticket_id)
        del self._tickets[ticket_id]
        del self._owners[ticket_id]

    async def count_users_by_role(self, company_id: str, role: UserRole) -> int:
        return sum(1 for owner, r in self.users.values() if owner == company_id and r == role)

    async def count_tickets_since(self, company_id: str, since: datetime) -> int:
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        return sum(
            1
            for ticket_id, owner in self._owners.items()
            if owner == company_id and self._tickets[ticket_id].created_at >= since
        )
