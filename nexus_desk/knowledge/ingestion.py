import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .vector_store import KnowledgeBase

logger = logging.getLogger(__name__)


@dataclass
class FaqEntry:
    question: str
    answer: str
    tags: list[str] = field(default_factory=list)
    lang: Optional[str] = None

    @property
    def document(self) -> str:
        return f"Q: {self.question}\nA: {self.answer}"

    def to_metadata(self) -> dict:
        metadata = {
            "question": self.question,
            "answer": self.answer,
            "tags": ", ".join(self.tags),
        }
        if self.lang:
            metadata["lang"] = self.lang
        return metadata

    @classmethod
    def from_metadata(cls, metadata: dict) -> "FaqEntry":
        tags = [t.strip() for t in (metadata.get("tags") or "").split(",") if t.strip()]
        return cls(
            question=metadata.get("question", ""),
            answer=metadata.get("answer", ""),
            tags=tags,
            lang=metadata.get("lang"),
        )


class KnowledgeIngester:
    def __init__(self, knowledge_base: KnowledgeBase):
        self.kb = knowledge_base

    def _generate_id(self, company_id: str, entry: FaqEntry) -> str:
        hash_input = f"{company_id}:{entry.lang or ''}:{entry.question[:100]}"
        return hashlib.sha256(hash_input.encode()).hexdigest()[:16]

    async def ingest_entries(self, company_id: str, entries: list[FaqEntry]) -> int:
        if not entries:
            return 0

        await self.kb.add_documents(
            company_id=company_id,
            documents=[entry.document for entry in entries],
            metadatas=[entry.to_metadata() for entry in entries],
            ids=[self._generate_id(company_id, entry) for entry in entries],
        )
        return len(entries)

    async def ingest_faq_file(
        self,
        company_id: str,
        file_path: Path,
        default_lang: Optional[str] = None,
    ) -> int:
        with open(file_path, encoding="utf-8") as f:
            faq_data = json.load(f)

        entries = []
        for item in faq_data:
            if not item.get("question") or not item.get("answer"):
                logger.warning("Skipping incomplete FAQ item in %s", file_path.name)
                continue
            tags = item.get("tags") or []
            if isinstance(tags, str):
                tags = [t.strip() for t in tags.split(",") if t.strip()]
            entries.append(FaqEntry(
                question=item["question"],
                answer=item["answer"],
                tags=tags,
                lang=item.get("lang", default_lang),
            ))

        return await self.ingest_entries(company_id, entries)
