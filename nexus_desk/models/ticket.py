from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
import uuid

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class TicketStatus(str, Enum):
    OPEN = "Open"
    IN_PROGRESS = "InProgress"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


class TicketPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class SenderRole(str, Enum):
    USER = "user"
    AGENT = "agent"
    AI = "ai"
    SYSTEM_SUMMARY = "system_summary"


class UserRole(str, Enum):
    USER = "user"
    AGENT = "agent"
    MANAGER = "manager"


class Party(str, Enum):
    AGENT = "agent"
    USER = "user"


class AppointmentStatus(str, Enum):
    PENDING_USER_APPROVAL = "pending_user_approval"
    PENDING_AGENT_APPROVAL = "pending_agent_approval"
    CONFIRMED = "confirmed"
    CANCELLED_BY_USER = "cancelled_by_user"
    CANCELLED_BY_AGENT = "cancelled_by_agent"
    RESCHEDULED_BY_USER = "rescheduled_by_user"
    RESCHEDULED_BY_AGENT = "rescheduled_by_agent"


FINAL_APPOINTMENT_STATUSES = frozenset({
    AppointmentStatus.CANCELLED_BY_USER,
    AppointmentStatus.CANCELLED_BY_AGENT,
})


class ChatMessage(BaseModel):
    id: str = Field(default_factory=new_id)
    sender: SenderRole
    text: str
    timestamp: datetime = Field(default_factory=utcnow)
    agent_id: Optional[str] = None
    # routing tags, stripped from every end-user view
    ai_profile_key: Optional[str] = None
    intake_payload: Optional[dict[str, Any]] = None

    def public_view(self) -> dict:
        return self.model_dump(mode="json", exclude={"ai_profile_key", "intake_payload"})


class InternalNote(BaseModel):
    id: str = Field(default_factory=new_id)
    text: str
    timestamp: datetime = Field(default_factory=utcnow)
    agent_id: Optional[str] = None
    ai_profile_key: Optional[str] = None
    intake_payload: Optional[dict[str, Any]] = None


class AppointmentDetails(BaseModel):
    id: str = Field(default_factory=new_id)
    proposed_by: Party
    proposed_date: str  # YYYY-MM-DD
    proposed_time: str  # HH:MM
    location_or_method: str
    status: AppointmentStatus
    notes: Optional[str] = None
    history: list["AppointmentDetails"] = Field(default_factory=list)

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_APPOINTMENT_STATUSES

    def snapshot(self) -> "AppointmentDetails":
        return self.model_copy(update={"history": []}, deep=True)

    def supersede(self, **changes: Any) -> "AppointmentDetails":
        return self.model_copy(
            update={**changes, "history": [*self.history, self.snapshot()]},
            deep=True,
        )


class Ticket(BaseModel):
    id: str = Field(default_factory=new_id)
    company_id: str
    user_id: str
    title: str
    description: str = ""
    category: str = "ticketCategory.GeneralQuestion"
    priority: TicketPriority = TicketPriority.MEDIUM
    status: TicketStatus = TicketStatus.OPEN
    chat_history: list[ChatMessage] = Field(default_factory=list)
    assigned_agent_id: Optional[str] = None
    assigned_ai_level: int = Field(default=1, ge=1, le=2)
    internal_notes: list[InternalNote] = Field(default_factory=list)
    current_appointment: Optional[AppointmentDetails] = None
    summary: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    @property
    def is_human_assigned(self) -> bool:
        return bool(self.assigned_agent_id)

    @property
    def last_message_at(self) -> Optional[datetime]:
        return self.chat_history[-1].timestamp if self.chat_history else None

    def public_view(self) -> dict:
        data = self.model_dump(mode="json", exclude={"internal_notes", "chat_history"})
        data["chat_history"] = [m.public_view() for m in self.chat_history]
        return data


class TicketCreate(BaseModel):
    user_id: str
    title: str
    description: str = ""
    category: str = "ticketCategory.GeneralQuestion"
    priority: TicketPriority = TicketPriority.MEDIUM
    initial_history: list[ChatMessage] = Field(default_factory=list)
