"""Backfill embeddings for every stored entry that lacks one.

Unlike the per-session EmbeddingBackfill job this walks the whole table,
retrying rate-limited or failing embedding calls with growing delays.

Usage: python scripts/backfill_embeddings.py [--dry-run]
"""

import asyncio
import logging
import sys

import httpx

import echovault.models as _models
from echovault.config import ProviderSettings
from echovault.db import Database
from echovault.providers.openai_embedding import OpenAIEmbedding
from echovault.utils.sanitize import is_valid_embedding

logger = logging.getLogger("echovault.backfill")

RETRY_DELAYS = [1.0, 2.0, 4.0]


async def embed_with_retry(provider: OpenAIEmbedding, text: str) -> list[float] | None:
    if not text or not text.strip():
        return None
    for attempt in range(len(RETRY_DELAYS) + 1):
        try:
            embedding = await provider.embed(text)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            retriable = status == 429 or status >= 500
            if not retriable or attempt == len(RETRY_DELAYS):
                print(f"  Embedding API error: {status}")
                return None
            print(f"  API returned {status}, waiting {RETRY_DELAYS[attempt]}s before retry...")
            await asyncio.sleep(RETRY_DELAYS[attempt])
            continue
        except httpx.HTTPError as e:
            if attempt == len(RETRY_DELAYS):
                print(f"  Embedding exception: {e}")
                return None
            await asyncio.sleep(RETRY_DELAYS[attempt])
            continue

        if not provider.fits(embedding):
            print(f"  Unexpected embedding dimension: {len(embedding)} (expected {provider.dims})")
            return None
        return embedding if is_valid_embedding(embedding) else None
    return None


async def run_backfill(dry_run: bool = False) -> None:
    cfg = ProviderSettings.from_env()
    if not cfg.llm_api_key:
        print("ECHOVAULT_LLM_API_KEY (or OPENAI_API_KEY) is not set")
        sys.exit(1)

    _models._embedding_dims = cfg.embedding_dims
    from echovault.storage.postgres import PostgresEntryStore

    provider = OpenAIEmbedding(
        api_key=cfg.llm_api_key,
        model=cfg.embedding_model,
        base_url=cfg.llm_base_url,
        dimensions=cfg.embedding_dims,
    )
    store = PostgresEntryStore(Database(cfg.database_url))
    processed = skipped = errors = 0

    try:
        entries = await store.list_entries()
        missing = [e for e in entries if not e.embedding]
        print(f"{len(entries)} entries, {len(missing)} without embeddings")

        for entry in missing:
            if not entry.text.strip():
                skipped += 1
                continue
            if dry_run:
                print(f"  would embed {entry.id}")
                continue
            embedding = await embed_with_retry(provider, entry.text)
            if embedding is None:
                errors += 1
                continue
            await store.update(entry.id, {"embedding": embedding})
            processed += 1
    finally:
        await store.close()

    print(f"Done: {processed} backfilled, {skipped} skipped, {errors} failed")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_backfill(dry_run="--dry-run" in sys.argv))
