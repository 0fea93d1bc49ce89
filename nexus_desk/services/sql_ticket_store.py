import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nexus_desk.errors import (
    ConcurrentModificationError,
    DuplicateUserError,
    TenantIsolationError,
    TicketNotFoundError,
)
from nexus_desk.models.database import CompanyRow, TicketRow, UserRow
from nexus_desk.models.plan import Company, CompanyAISettings, PlanTier
from nexus_desk.models.ticket import Ticket, TicketStatus, UserRole, utcnow
from nexus_desk.services.ticket_store import TicketStore, validate_patch

logger = logging.getLogger(__name__)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _row_to_ticket(row: TicketRow) -> Ticket:
    return Ticket.model_validate({
        "id": row.id,
        "company_id": row.company_id,
        "user_id": row.user_id,
        "title": row.title,
        "description": row.description,
        "category": row.category,
        "priority": row.priority,
        "status": row.status,
        "assigned_agent_id": row.assigned_agent_id,
        "assigned_ai_level": row.assigned_ai_level,
        "chat_history": row.chat_history or [],
        "internal_notes": row.internal_notes or [],
        "current_appointment": row.current_appointment,
        "summary": row.summary,
        "metadata": row.metadata_ or {},
        "created_at": _aware(row.created_at),
        "updated_at": _aware(row.updated_at),
        "version": row.version,
    })


def _ticket_values(ticket: Ticket) -> dict[str, Any]:
    data = ticket.model_dump(mode="json")
    return {
        "user_id": ticket.user_id,
        "title": ticket.title,
        "description": ticket.description,
        "category": ticket.category,
        "priority": ticket.priority.value,
        "status": ticket.status.value,
        "assigned_agent_id": ticket.assigned_agent_id,
        "assigned_ai_level": ticket.assigned_ai_level,
        "chat_history": data["chat_history"],
        "internal_notes": data["internal_notes"],
        "current_appointment": data["current_appointment"],
        "summary": ticket.summary,
        "metadata_": data["metadata"],
        "created_at": _naive_utc(ticket.created_at),
        "updated_at": _naive_utc(ticket.updated_at),
        "version": ticket.version,
    }


class SqlAlchemyTicketStore(TicketStore):
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def add_company(self, company: Company) -> Company:
        async with self.session_factory() as session:
            session.add(CompanyRow(
                id=company.id,
                name=company.name,
                plan=company.plan.value,
                ai_settings=company.ai_settings.model_dump(mode="json") if company.ai_settings else None,
            ))
            await session.commit()
        return company

    async def add_user(self, company_id: str, user_id: str, role: UserRole) -> None:
        async with self.session_factory() as session:
            if await session.get(UserRow, user_id) is not None:
                raise DuplicateUserError(user_id)
            session.add(UserRow(id=user_id, company_id=company_id, role=role.value))
            await session.commit()

    async def get_user_role(self, company_id: str, user_id: str) -> Optional[UserRole]:
        async with self.session_factory() as session:
            row = await session.get(UserRow, user_id)
            if row is None or row.company_id != company_id:
                return None
            return UserRole(row.role)

    async def _check_owner(self, session: AsyncSession, company_id: str, ticket_id: str) -> None:
        result = await session.execute(select(TicketRow.company_id).where(TicketRow.id == ticket_id))
        owner = result.scalar_one_or_none()
        if owner is None:
            raise TicketNotFoundError(ticket_id)
        if owner != company_id:
            logger.warning("Cross-tenant access to ticket %s rejected for company %s", ticket_id, company_id)
            raise TenantIsolationError(company_id, ticket_id)

    async def get_company(self, company_id: str) -> Optional[Company]:
        async with self.session_factory() as session:
            row = await session.get(CompanyRow, company_id)
            if row is None:
                return None
            return Company(
                id=row.id,
                name=row.name,
                plan=PlanTier(row.plan),
                ai_settings=CompanyAISettings.model_validate(row.ai_settings) if row.ai_settings else None,
            )

    async def get_ticket(self, company_id: str, ticket_id: str) -> Ticket:
        async with self.session_factory() as session:
            await self._check_owner(session, company_id, ticket_id)
            row = await session.get(TicketRow, ticket_id)
            return _row_to_ticket(row)

    async def list_tickets(
        self,
        company_id: str,
        status: Optional[TicketStatus] = None,
        assigned_agent_id: Optional[str] = None,
    ) -> list[Ticket]:
        query = select(TicketRow).where(TicketRow.company_id == company_id)
        if status is not None:
            query = query.where(TicketRow.status == status.value)
        if assigned_agent_id is not None:
            query = query.where(TicketRow.assigned_agent_id == assigned_agent_id)

        async with self.session_factory() as session:
            result = await session.execute(query.order_by(TicketRow.created_at))
            return [_row_to_ticket(row) for row in result.scalars().all()]

    async def create_ticket(self, ticket: Ticket) -> Ticket:
        async with self.session_factory() as session:
            session.add(TicketRow(id=ticket.id, company_id=ticket.company_id, **_ticket_values(ticket)))
            await session.commit()
        return ticket.model_copy(deep=True)

    async def update_ticket(
        self,
        company_id: str,
        ticket_id: str,
        patch: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Ticket:
        validate_patch(patch)
        async with self.session_factory() as session:
            await self._check_owner(session, company_id, ticket_id)
            while True:
                current = await self._load(session, ticket_id)
                if expected_version is not None and current.version != expected_version:
                    raise ConcurrentModificationError(ticket_id, expected_version, current.version)

                updated = Ticket.model_validate({
                    **current.model_dump(),
                    **patch,
                    "updated_at": utcnow(),
                    "version": current.version + 1,
                })
                # compare-and-set: the row only changes if nobody wrote since it was read
                result = await session.execute(
                    update(TicketRow)
                    .where(TicketRow.id == ticket_id, TicketRow.version == current.version)
                    .values(**_ticket_values(updated))
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    await session.commit()
                    return updated

                await session.rollback()
                if expected_version is not None:
                    actual = (await self._load(session, ticket_id)).version
                    raise ConcurrentModificationError(ticket_id, expected_version, actual)
                logger.debug("Ticket %s changed during unversioned update, re-reading", ticket_id)

    async def _load(self, session: AsyncSession, ticket_id: str) -> Ticket:
        row = await session.get(TicketRow, ticket_id, populate_existing=True)
        if row is None:
            raise TicketNotFoundError(ticket_id)
        return _row_to_ticket(row)

    async def delete_ticket(self, company_id: str, ticket_id: str) -> None:
        async with self.session_factory() as session:
            await self._check_owner(session, company_id, ticket_id)
            row = await session.get(TicketRow, ticket_id)
            await session.delete(row)
            await session.commit()

    async def count_users_by_role(self, company_id: str, role: UserRole) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(UserRow)
                .where(UserRow.company_id == company_id, UserRow.role == role.value)
            )
            return result.scalar_one()

    async def count_tickets_since(self, company_id: str, since: datetime) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(TicketRow)
                .where(TicketRow.company_id == company_id, TicketRow.created_at >= _naive_utc(since))
            )
            return result.scalar_one()
