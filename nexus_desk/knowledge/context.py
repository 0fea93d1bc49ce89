import logging
from typing import Optional

from .ingestion import FaqEntry
from .vector_store import KnowledgeBase

logger = logging.getLogger(__name__)

KNOWLEDGE_HEADER = (
    "COMPANY KNOWLEDGE BASE\n\n"
    "These Q&A entries come from the client's official documentation and MUST be used "
    "as an authoritative source when relevant."
)


def format_knowledge_context(entries: list[FaqEntry]) -> Optional[str]:
    if not entries:
        return None

    blocks = []
    for i, entry in enumerate(entries, start=1):
        block = f"FAQ #{i}\nQuestion: {entry.question}\nAnswer: {entry.answer}"
        if entry.tags:
            block += f"\nTags: {', '.join(entry.tags)}"
        blocks.append(block)
    return f"{KNOWLEDGE_HEADER}\n\n" + "\n\n".join(blocks)


async def build_knowledge_context(
    knowledge_base: Optional[KnowledgeBase],
    company_id: Optional[str],
    query: str,
    language: Optional[str] = None,
    top_k: int = 5,
) -> Optional[str]:
    """FAQ context for the prompt, or None when the company has nothing relevant.

    A failing knowledge lookup never blocks the reply; it is logged and skipped.
    """
    if knowledge_base is None or not company_id or not query.strip():
        return None

    try:
        results = await knowledge_base.search(company_id, query, top_k=top_k, language=language)
    except Exception:
        logger.warning("Knowledge lookup failed for company %s", company_id, exc_info=True)
        return None

    entries = [FaqEntry.from_metadata(r["metadata"]) for r in results if r.get("metadata")]
    return format_knowledge_context([e for e in entries if e.question and e.answer])
