import asyncio
import logging
from typing import Optional

from nexus_desk.agents.model_client import ModelClient, ModelRequest, ModelTurn, to_model_turns
from nexus_desk.config import get_settings
from nexus_desk.locales import language_name, summary_fallback_message
from nexus_desk.models.ticket import Ticket

logger = logging.getLogger(__name__)

SUMMARY_INSTRUCTION = """You are Nexus, an AI assistant. Provide a concise summary (2-4 sentences) of the user's problem and key interactions, based on the ticket context and chat history.
This summary is for a help desk agent who is about to take over the ticket.
Focus on:
1. The core issue the user is facing.
2. Any significant information already provided by the user.
3. Key troubleshooting steps already attempted, if any.
4. Current state or outstanding questions from the user.
Do not include greetings or conversational fluff. Provide only the summary.
IMPORTANT: Respond ONLY in {language}."""

SUMMARY_REQUEST = "Summarize this ticket for the agent taking over."


def ticket_context(ticket: Ticket) -> str:
    return (
        f'Ticket Title: "{ticket.title}"\n'
        f'Category: "{ticket.category}"\n'
        f'Initial Description: "{ticket.description}"\n'
        f"Status: {ticket.status.value}\n"
        f"Priority: {ticket.priority.value}"
    )


class TicketSummarizer:
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

    async def summarize(self, ticket: Ticket, language: Optional[str] = None) -> str:
        """Hand-off summary for the agent taking over ``ticket``.

        Falls back to a localized notice on failure; the error itself is only logged.
        """
        request = ModelRequest(
            system_instruction=SUMMARY_INSTRUCTION.format(language=language_name(language)),
            conversation=[
                ModelTurn(role="user", text=ticket_context(ticket)),
                *to_model_turns(ticket.chat_history, self.max_history),
                ModelTurn(role="user", text=SUMMARY_REQUEST),
            ],
            temperature=0.3,
        )

        try:
            summary = await asyncio.wait_for(self.model_client.generate(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error("Summary for ticket %s timed out", ticket.id)
            return summary_fallback_message(language)
        except Exception:
            logger.exception("Summary for ticket %s failed", ticket.id)
            return summary_fallback_message(language)

        summary = summary.strip()
        return summary or summary_fallback_message(language)
