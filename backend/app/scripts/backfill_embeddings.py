"""Embed visits that have no embedding, or one from a different model.

Run after changing EMBEDDING_MODEL so similarity search compares vectors
from a single model again.

Usage:
    uv run python -m app.scripts.backfill_embeddings [--batch-size 50] [--dry-run]
"""

import argparse
import asyncio

from app.database import async_session_maker
from app.exceptions import EmbeddingUnavailableError
from app.repositories.visit import VisitRepository
from app.services.embeddings import EmbeddingService, visit_to_text


async def backfill_embeddings(batch_size: int = 50, dry_run: bool = False) -> dict[str, int]:
    """
    Re-embed stale visits in batches.

    Args:
        batch_size: Visits embedded per API call and per commit.
        dry_run: Only count the visits that would be embedded.

    Returns:
        Dictionary with counts: embedded, skipped, failed_batches.
    """
    stats = {"embedded": 0, "skipped": 0, "failed_batches": 0}
    service = EmbeddingService()

    try:
        async with async_session_maker() as session:
            repo = VisitRepository(session)

            if dry_run:
                stale = await repo.list_needing_embedding(service.model, limit=1_000_000)
                stats["skipped"] = len(stale)
                print(f"  {len(stale)} visits would be embedded with {service.model}")
                return stats

            failed_ids: set = set()
            while True:
                batch = [
                    v
                    for v in await repo.list_needing_embedding(
                        service.model, limit=batch_size + len(failed_ids)
                    )
                    if v.id not in failed_ids
                ][:batch_size]
                if not batch:
                    break

                texts = [visit_to_text(v) for v in batch]
                embeddable = [(v, t) for v, t in zip(batch, texts) if t.strip()]
                for visit, text in zip(batch, texts):
                    if not text.strip():
                        failed_ids.add(visit.id)
                        stats["skipped"] += 1

                if not embeddable:
                    continue

                try:
                    vectors = await service.embed_texts([t for _, t in embeddable])
                except EmbeddingUnavailableError as e:
                    print(f"  Batch failed: {e}")
                    stats["failed_batches"] += 1
                    failed_ids.update(v.id for v, _ in embeddable)
                    continue

                for (visit, text), vector in zip(embeddable, vectors):
                    visit.embedding = vector
                    visit.embedding_model = service.model
                    visit.embedding_text = text
                await session.commit()

                stats["embedded"] += len(embeddable)
                print(f"  Embedded {stats['embedded']} visits so far")
    finally:
        await service.close()

    return stats


def main() -> None:
    """Main entry point for the backfill script."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--batch-size", type=int, default=50)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    print("=" * 50)
    print("Visit Embedding Backfill")
    print("=" * 50)

    stats = asyncio.run(backfill_embeddings(batch_size=args.batch_size, dry_run=args.dry_run))

    print("\n" + "=" * 50)
    print("Summary")
    print("=" * 50)
    print(f"  Embedded:       {stats['embedded']}")
    print(f"  Skipped:        {stats['skipped']}")
    print(f"  Failed batches: {stats['failed_batches']}")


if __name__ == "__main__":
    main()
