from .context import build_knowledge_context, format_knowledge_context
from .ingestion import FaqEntry, KnowledgeIngester
from .vector_store import KnowledgeBase, company_collection

__all__ = [
    "KnowledgeBase",
    "KnowledgeIngester",
    "FaqEntry",
    "build_knowledge_context",
    "format_knowledge_context",
    "company_collection",
]
