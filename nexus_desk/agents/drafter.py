import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from nexus_desk.agents.model_client import ModelClient, ModelRequest, ModelTurn, to_model_turns
from nexus_desk.agents.output import load_json_object
from nexus_desk.config import get_settings
from nexus_desk.errors import ModelOutputError
from nexus_desk.locales import draft_fallback_title, language_name
from nexus_desk.models.ticket import ChatMessage, SenderRole, TicketCreate, TicketPriority

logger = logging.getLogger(__name__)

DRAFT_FIELDS = ("title", "description", "category", "priority")
DEFAULT_CATEGORY = TicketCreate.model_fields["category"].default
FALLBACK_TITLE_WORDS = 10

DRAFT_INSTRUCTION = """You are Nexus, a ticket analysis AI. Your task is to process a conversation between a user and a help desk assistant.
Based on the full conversation, you MUST generate a JSON object with four specific keys: "title", "description", "category", and "priority".
The response MUST be ONLY a raw JSON object, without any markdown code fences.

1. "title": Create a short, descriptive title (5-10 words) for the ticket. This should summarize the user's core problem.
2. "description": Write a comprehensive summary of the entire conversation. Include the initial problem, key details provided by the user, and any troubleshooting steps already attempted by the assistant.
3. "category": Choose the BEST matching category from this specific list: [{categories}]. You MUST select one of these exact keys.
4. "priority": Assess the urgency and impact of the issue and choose a priority from this specific list: [{priorities}].

The entire JSON response, including all string values, MUST be in {language}.
Do not add any explanations or text outside of the JSON object."""

DRAFT_REQUEST = "Create the ticket for this conversation."


@dataclass
class TicketDraft:
    title: str
    description: str
    category: str
    priority: TicketPriority
    is_fallback: bool = False

    def to_ticket_create(self, user_id: str, history: list[ChatMessage]) -> TicketCreate:
        return TicketCreate(
            user_id=user_id,
            title=self.title,
            description=self.description,
            category=self.category,
            priority=self.priority,
            initial_history=history,
        )


def _pick_category(value: str, valid_categories: list[str]) -> Optional[str]:
    for category in valid_categories:
        if category.lower() == value.strip().lower():
            return category
    return None


def _pick_priority(value: str) -> Optional[TicketPriority]:
    for priority in TicketPriority:
        if priority.value.lower() == value.strip().lower():
            return priority
    return None


def default_category(valid_categories: list[str]) -> str:
    if not valid_categories or DEFAULT_CATEGORY in valid_categories:
        return DEFAULT_CATEGORY
    return valid_categories[0]


def fallback_draft(
    history: list[ChatMessage],
    valid_categories: list[str],
    language: Optional[str] = None,
) -> TicketDraft:
    """Deterministic draft built from the user's own messages."""
    user_texts = [m.text.strip() for m in history if m.sender == SenderRole.USER and m.text.strip()]
    if user_texts:
        words = user_texts[0].split()
        title = " ".join(words[:FALLBACK_TITLE_WORDS])
        if len(words) > FALLBACK_TITLE_WORDS:
            title += "..."
    else:
        title = draft_fallback_title(language)

    return TicketDraft(
        title=title,
        description="\n".join(user_texts),
        category=default_category(valid_categories),
        priority=TicketPriority.MEDIUM,
        is_fallback=True,
    )


def parse_draft(raw_text: str, valid_categories: list[str]) -> TicketDraft:
    data: dict[str, Any] = load_json_object(raw_text)
    missing = [key for key in DRAFT_FIELDS if not isinstance(data.get(key), str) or not data[key].strip()]
    if missing:
        raise ModelOutputError(f"Ticket draft is missing required fields: {', '.join(missing)}")

    category = _pick_category(data["category"], valid_categories)
    if category is None:
        logger.warning("Model chose unknown category %r, using the default", data["category"])
        category = default_category(valid_categories)

    priority = _pick_priority(data["priority"])
    if priority is None:
        logger.warning("Model chose unknown priority %r, using Medium", data["priority"])
        priority = TicketPriority.MEDIUM

    return TicketDraft(
        title=data["title"].strip(),
        description=data["description"].strip(),
        category=category,
        priority=priority,
    )


class TicketDrafter:
    """Turns a pre-ticket help chat into ticket fields."""

    def __init__(
        self,
        model_client: ModelClient,
        timeout_seconds: Optional[float] = None,
        max_history: Optional[int] = None,
    ):
        settings = get_settings()
        self.model_client = model_client
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.summary_timeout_seconds
        self.max_history = max_history if max_history is not None else settings.ai_max_history

    async def draft(
        self,
        history: list[ChatMessage],
        valid_categories: list[str],
        language: Optional[str] = None,
    ) -> TicketDraft:
        request = ModelRequest(
            system_instruction=DRAFT_INSTRUCTION.format(
                categories=", ".join(valid_categories or [DEFAULT_CATEGORY]),
                priorities=", ".join(p.value for p in TicketPriority),
                language=language_name(language),
            ),
            conversation=[
                *to_model_turns(history, self.max_history),
                ModelTurn(role="user", text=DRAFT_REQUEST),
            ],
            temperature=0.5,
        )

        try:
            raw_text = await asyncio.wait_for(self.model_client.generate(request), timeout=self.timeout_seconds)
            return parse_draft(raw_text, valid_categories)
        except asyncio.TimeoutError:
            logger.error("Ticket draft timed out after %ss", self.timeout_seconds)
        except Exception:
            logger.exception("Ticket draft failed")
        return fallback_draft(history, valid_categories, language)
