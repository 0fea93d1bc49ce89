from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Literal

import anthropic

from nexus_desk.errors import ModelInvocationError
from nexus_desk.models.ticket import ChatMessage, SenderRole

CONVERSATION_START = "(conversation start)"


@dataclass
class ModelTurn:
    role: Literal["user", "model"]
    text: str


@dataclass
class ModelRequest:
    system_instruction: str
    conversation: list[ModelTurn] = field(default_factory=list)
    temperature: float = 0.7


def to_model_turns(history: list[ChatMessage], max_messages: int | None = None) -> list[ModelTurn]:
    history = [m for m in history if m.sender != SenderRole.SYSTEM_SUMMARY]
    if max_messages is not None and len(history) > max_messages:
        history = history[-max_messages:]
    return [
        ModelTurn(role="user" if m.sender == SenderRole.USER else "model", text=m.text)
        for m in history
    ]


class ModelClient(ABC):
    @abstractmethod
    async def generate(self, request: ModelRequest) -> str:
        pass


class AnthropicModelClient(ModelClient):
    def __init__(
        self,
        client: anthropic.AsyncAnthropic,
        model: str = "claude-3-5-sonnet-20241022",
        max_tokens: int = 1000,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    def _build_messages(self, conversation: list[ModelTurn]) -> list[dict]:
        messages: list[dict] = []
        for turn in conversation:
            role = "user" if turn.role == "user" else "assistant"
            if messages and messages[-1]["role"] == role:
                messages[-1]["content"] += f"\n\n{turn.text}"
            else:
                messages.append({"role": role, "content": turn.text})

        if not messages or messages[0]["role"] != "user":
            messages.insert(0, {"role": "user", "content": CONVERSATION_START})
        return messages

    async def generate(self, request: ModelRequest) -> str:
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=request.system_instruction,
                messages=self._build_messages(request.conversation),
                temperature=request.temperature,
            )
        except anthropic.APIError as exc:
            raise ModelInvocationError(str(exc)) from exc

        text = "".join(block.text for block in response.content if getattr(block, "type", None) == "text")
        if not text:
            raise ModelInvocationError("Model returned no text content")
        return text
