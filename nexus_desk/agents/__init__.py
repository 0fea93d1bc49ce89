from .drafter import TicketDraft, TicketDrafter
from .model_client import AnthropicModelClient, ModelClient, ModelRequest, ModelTurn
from .profiles import AIProfileRouter, ModelReply, PromptContext
from .summarizer import TicketSummarizer

__all__ = [
    "AIProfileRouter",
    "AnthropicModelClient",
    "ModelClient",
    "ModelReply",
    "ModelRequest",
    "ModelTurn",
    "PromptContext",
    "TicketDraft",
    "TicketDrafter",
    "TicketSummarizer",
]
