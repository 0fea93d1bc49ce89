import asyncio
import logging
from typing import Optional

import chromadb
from chromadb.config import Settings as ChromaSettings

from nexus_desk.config import get_settings

logger = logging.getLogger(__name__)


def company_collection(company_id: str) -> str:
    return f"company_{company_id}_knowledge"


class KnowledgeBase:
    """Per-company FAQ collections in a chroma store."""

    def __init__(self, persist_directory: Optional[str] = None, client=None):
        self.persist_directory = persist_directory or get_settings().chroma_persist_dir

        self.client = client or chromadb.PersistentClient(
            path=self.persist_directory,
            settings=ChromaSettings(anonymized_telemetry=False),
        )

        self._collections: dict[str, chromadb.Collection] = {}

    def get_or_create_collection(self, name: str) -> chromadb.Collection:
        if name not in self._collections:
            self._collections[name] = self.client.get_or_create_collection(
                name=name,
                metadata={"hnsw:space": "cosine"},
            )
        return self._collections[name]

    async def add_documents(
        self,
        company_id: str,
        documents: list[str],
        metadatas: list[dict],
        ids: list[str],
    ) -> None:
        coll = self.get_or_create_collection(company_collection(company_id))
        await asyncio.to_thread(
            coll.upsert,
            documents=documents,
            metadatas=metadatas,
            ids=ids,
        )

    async def search(
        self,
        company_id: str,
        query: str,
        top_k: int = 5,
        language: Optional[str] = None,
    ) -> list[dict]:
        # chroma embeds and queries synchronously; keep it off the event loop
        coll = await asyncio.to_thread(self.get_or_create_collection, company_collection(company_id))
        count = await asyncio.to_thread(coll.count)
        if count == 0:
            return []

        results = await asyncio.to_thread(
            coll.query,
            query_texts=[query],
            n_results=min(top_k, count),
            where={"lang": language} if language else None,
        )

        if not results["documents"] or not results["documents"][0]:
            return []

        documents = results["documents"][0]
        metadatas = results["metadatas"][0] if results["metadatas"] else [{}] * len(documents)
        distances = results["distances"][0] if results["distances"] else [0.0] * len(documents)

        return [
            {
                "content": doc,
                "score": 1 - dist,
                "metadata": meta or {},
            }
            for doc, meta, dist in zip(documents, metadatas, distances)
        ]

    async def get_collection_count(self, company_id: str) -> int:
        coll = await asyncio.to_thread(self.get_or_create_collection, company_collection(company_id))
        return await asyncio.to_thread(coll.count)
