#!/usr/bin/env python3
"""Seed a company's knowledge base with FAQ data.

Usage: seed_knowledge_base.py COMPANY_ID FAQ_FILE [FAQ_FILE ...] [--lang fr]
"""

import argparse
import asyncio
from pathlib import Path

from nexus_desk.config import configure_logging, get_settings
from nexus_desk.knowledge import KnowledgeBase, KnowledgeIngester


async def main(company_id: str, files: list[Path], lang: str | None):
    settings = get_settings()
    print(f"Initializing knowledge base in {settings.chroma_persist_dir}...")
    kb = KnowledgeBase(persist_directory=settings.chroma_persist_dir)
    ingester = KnowledgeIngester(kb)

    total_docs = 0
    for file_path in files:
        if not file_path.exists():
            print(f"Warning: {file_path} not found, skipping...")
            continue

        count = await ingester.ingest_faq_file(company_id, file_path, default_lang=lang)
        print(f"Ingested {count} FAQ entries from {file_path.name}")
        total_docs += count

    print(f"\nTotal FAQ entries ingested: {total_docs}")
    print(f"Company {company_id}: {await kb.get_collection_count(company_id)} entries stored")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("company_id")
    parser.add_argument("files", nargs="+", type=Path)
    parser.add_argument("--lang", choices=["fr", "en", "ar"], default=None)
    args = parser.parse_args()

    configure_logging()
    asyncio.run(main(args.company_id, args.files, args.lang))
