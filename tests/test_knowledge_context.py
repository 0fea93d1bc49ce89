import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from nexus_desk.knowledge import (
    FaqEntry,
    KnowledgeBase,
    KnowledgeIngester,
    build_knowledge_context,
    format_knowledge_context,
)


def test_format_numbers_entries():
    context = format_knowledge_context([
        FaqEntry(question="Opening hours?", answer="9 to 5.", tags=["office"]),
        FaqEntry(question="Parking?", answer="Level -2."),
    ])

    assert context.startswith("COMPANY KNOWLEDGE BASE")
    assert "FAQ #1\nQuestion: Opening hours?\nAnswer: 9 to 5.\nTags: office" in context
    assert "FAQ #2\nQuestion: Parking?\nAnswer: Level -2." in context
    assert "Tags" not in context.split("FAQ #2")[1]


def test_format_empty_is_none():
    assert format_knowledge_context([]) is None


@pytest.mark.asyncio
async def test_lookup_failure_is_skipped():
    knowledge_base = AsyncMock(spec=KnowledgeBase)
    knowledge_base.search.side_effect = RuntimeError("chroma down")

    assert await build_knowledge_context(knowledge_base, "acme", "wifi?") is None


@pytest.mark.asyncio
async def test_no_company_no_lookup():
    knowledge_base = AsyncMock(spec=KnowledgeBase)

    assert await build_knowledge_context(knowledge_base, None, "wifi?") is None
    knowledge_base.search.assert_not_called()


@pytest.mark.asyncio
async def test_search_uses_company_collection_and_language():
    collection = MagicMock()
    collection.count.return_value = 4
    collection.query.return_value = {
        "documents": [["Q: Wifi?\nA: Use guest."]],
        "metadatas": [[{"question": "Wifi?", "answer": "Use guest.", "tags": "network, office", "lang": "fr"}]],
        "distances": [[0.25]],
    }
    chroma = MagicMock()
    chroma.get_or_create_collection.return_value = collection
    knowledge_base = KnowledgeBase(persist_directory="unused", client=chroma)

    context = await build_knowledge_context(knowledge_base, "acme", "wifi?", language="fr", top_k=10)

    chroma.get_or_create_collection.assert_called_once_with(
        name="company_acme_knowledge", metadata={"hnsw:space": "cosine"}
    )
    collection.query.assert_called_once_with(query_texts=["wifi?"], n_results=4, where={"lang": "fr"})
    assert "Tags: network, office" in context


@pytest.mark.asyncio
async def test_ingest_faq_file(tmp_path):
    faq_file = tmp_path / "faq.json"
    faq_file.write_text(json.dumps([
        {"question": "Reset password?", "answer": "Use the portal.", "tags": "account, login"},
        {"question": "VPN?", "answer": "Use GlobalProtect.", "tags": ["network"], "lang": "en"},
        {"question": "Incomplete"},
    ]))
    knowledge_base = AsyncMock(spec=KnowledgeBase)
    ingester = KnowledgeIngester(knowledge_base)

    count = await ingester.ingest_faq_file("acme", faq_file, default_lang="fr")

    assert count == 2
    kwargs = knowledge_base.add_documents.await_args.kwargs
    assert kwargs["company_id"] == "acme"
    assert kwargs["documents"][0] == "Q: Reset password?\nA: Use the portal."
    assert kwargs["metadatas"][0]["tags"] == "account, login"
    assert [m["lang"] for m in kwargs["metadatas"]] == ["fr", "en"]
    assert len(set(kwargs["ids"])) == 2
