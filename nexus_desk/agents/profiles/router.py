import asyncio
import logging
from dataclasses import replace
from typing import Optional

from nexus_desk.agents.model_client import ModelClient, ModelRequest, to_model_turns
from nexus_desk.config import get_settings
from nexus_desk.knowledge import KnowledgeBase, build_knowledge_context
from nexus_desk.locales import ai_fallback_message
from nexus_desk.models.plan import CompanyAISettings
from nexus_desk.models.ticket import SenderRole

from .base import AIProfile, ModelReply, ProfileSelection, PromptContext
from .default_helpdesk import DefaultHelpdeskProfile
from .legal_intake import LegalIntakeProfile

logger = logging.getLogger(__name__)


def default_profiles() -> list[AIProfile]:
    # heuristics are tried in this order; the last entry is the fallback
    return [LegalIntakeProfile(), DefaultHelpdeskProfile()]


class AIProfileRouter:
    def __init__(
        self,
        model_client: ModelClient,
        profiles: Optional[list[AIProfile]] = None,
        knowledge_base: Optional[KnowledgeBase] = None,
        timeout_seconds: Optional[float] = None,
        max_history: Optional[int] = None,
        temperature: Optional[float] = None,
        knowledge_top_k: Optional[int] = None,
    ):
        settings = get_settings()
        self.model_client = model_client
        self.profiles = profiles or default_profiles()
        self.default_profile = self.profiles[-1]
        self.knowledge_base = knowledge_base
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.ai_timeout_seconds
        self.max_history = max_history if max_history is not None else settings.ai_max_history
        self.temperature = temperature if temperature is not None else settings.ai_temperature
        self.knowledge_top_k = knowledge_top_k or settings.knowledge_top_k

    def select_profile(
        self,
        company_id: Optional[str] = None,
        company_name: Optional[str] = None,
        ai_settings: Optional[CompanyAISettings] = None,
    ) -> AIProfile:
        explicit_key = ai_settings.ai_profile_key if ai_settings else None
        if explicit_key:
            for profile in self.profiles:
                if profile.handles_key(explicit_key):
                    return profile
            logger.warning("Unknown AI profile key %r for company %s, falling back", explicit_key, company_id)

        selection = ProfileSelection(company_id=company_id, company_name=company_name, ai_settings=ai_settings)
        for profile in self.profiles:
            if profile.matches(selection):
                return profile

        return self.default_profile

    def build_prompt(self, profile: AIProfile, ctx: PromptContext) -> str:
        return profile.build_system_instruction(ctx)

    def parse_model_output(self, profile: AIProfile, raw_text: str) -> ModelReply:
        return profile.parse_output(raw_text)

    async def respond(self, ctx: PromptContext, profile: Optional[AIProfile] = None) -> ModelReply:
        """Produce the next AI reply for a ticket thread.

        Never raises for model trouble: timeouts, API errors and malformed output all
        turn into the localized fallback with escalation suggested.
        """
        profile = profile or self.select_profile(ctx.company_id, ctx.company_name, ctx.ai_settings)

        if ctx.knowledge_context is None and self.knowledge_base is not None:
            ctx = replace(ctx, knowledge_context=await self._knowledge_for(ctx))

        request = ModelRequest(
            system_instruction=self.build_prompt(profile, ctx),
            conversation=to_model_turns(ctx.chat_history, self.max_history),
            temperature=self.temperature,
        )

        try:
            raw_text = await asyncio.wait_for(self.model_client.generate(request), timeout=self.timeout_seconds)
            reply = self.parse_model_output(profile, raw_text)
        except asyncio.TimeoutError:
            logger.error("Model call timed out after %ss for ticket %s", self.timeout_seconds, ctx.ticket_id)
            return self._fallback(profile, ctx)
        except Exception:
            logger.exception("Model reply failed for ticket %s (profile %s)", ctx.ticket_id, profile.key)
            return self._fallback(profile, ctx)

        logger.info(
            "AI reply for ticket %s via %s (escalation=%s)",
            ctx.ticket_id,
            profile.key,
            reply.escalation_suggested,
        )
        return reply

    async def _knowledge_for(self, ctx: PromptContext) -> Optional[str]:
        latest_user = next(
            (m.text for m in reversed(ctx.chat_history) if m.sender == SenderRole.USER),
            ctx.ticket_title,
        )
        try:
            return await asyncio.wait_for(
                build_knowledge_context(
                    self.knowledge_base,
                    ctx.company_id,
                    latest_user,
                    language=ctx.language,
                    top_k=self.knowledge_top_k,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Knowledge lookup for ticket %s timed out, answering without it", ctx.ticket_id)
            return None

    def _fallback(self, profile: AIProfile, ctx: PromptContext) -> ModelReply:
        return ModelReply(
            response_text=ai_fallback_message(ctx.language),
            escalation_suggested=True,
            profile_key=profile.key,
            is_fallback=True,
        )
