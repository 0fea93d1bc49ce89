import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from nexus_desk.agents.output import HiddenBlock, load_json_object, require_reply_fields
from nexus_desk.locales import language_name
from nexus_desk.models.plan import CompanyAISettings
from nexus_desk.models.ticket import ChatMessage


@dataclass
class ProfileSelection:
    company_id: Optional[str] = None
    company_name: Optional[str] = None
    ai_settings: Optional[CompanyAISettings] = None


@dataclass
class PromptContext:
    ticket_title: str
    ticket_category: str
    assigned_ai_level: int = 1
    language: str = "en"
    chat_history: list[ChatMessage] = field(default_factory=list)
    company_id: Optional[str] = None
    company_name: Optional[str] = None
    ticket_id: Optional[str] = None
    ai_settings: Optional[CompanyAISettings] = None
    knowledge_context: Optional[str] = None
    additional_system_context: Optional[str] = None


@dataclass
class ModelReply:
    response_text: str
    escalation_suggested: bool
    attorney_summary: Optional[str] = None
    intake_data: Optional[dict[str, Any]] = None
    profile_key: Optional[str] = None
    is_fallback: bool = False


class AIProfile(ABC):
    key: str
    aliases: tuple[str, ...] = ()
    hidden_block: Optional[HiddenBlock] = None
    extra_output_keys: dict[str, str] = {}

    def handles_key(self, profile_key: Optional[str]) -> bool:
        if not profile_key:
            return False
        return profile_key == self.key or profile_key in self.aliases

    def matches(self, selection: ProfileSelection) -> bool:
        return False

    @abstractmethod
    def build_system_instruction(self, ctx: PromptContext) -> str:
        pass

    def parse_output(self, raw_text: str) -> ModelReply:
        data = load_json_object(raw_text)
        response_text, escalation = require_reply_fields(data)

        summary = None
        if self.hidden_block is not None:
            response_text, summary = self.hidden_block.extract(response_text)

        return ModelReply(
            response_text=response_text,
            escalation_suggested=escalation,
            attorney_summary=summary,
            intake_data=self.extract_intake(data),
            profile_key=self.key,
        )

    def extract_intake(self, data: dict[str, Any]) -> Optional[dict[str, Any]]:
        return None

    def _output_format_instruction(self, ctx: PromptContext, escalation_rule: str) -> str:
        lines = [
            "Your entire response MUST be a single, raw JSON object, without any markdown like ```json.",
            "The JSON object must contain at least these keys:",
            f'- "responseText": string, the message shown to the user, written in {language_name(ctx.language)}.',
            f'- "escalationSuggested": boolean, {escalation_rule}',
        ]
        for name, description in self.extra_output_keys.items():
            lines.append(f'- "{name}": {description}')
        return "\n".join(lines)

    def _company_context(self, ctx: PromptContext) -> str:
        parts = []
        if ctx.additional_system_context:
            parts.append(ctx.additional_system_context)
        settings = ctx.ai_settings
        if settings and settings.extra_context:
            parts.append(f"Additional company context: {json.dumps(settings.extra_context, ensure_ascii=False)}")
        if settings and settings.system_prompt_override:
            parts.append(f"Company-specific instructions: {settings.system_prompt_override}")
        return "\n".join(parts)
