"""Seed the article store for local development and load testing.

Author ids are not validated against the user service; pass ids that
exist there if enriched responses are expected.
"""
import argparse
import asyncio
import random
import time
from datetime import datetime, timedelta, timezone

from app.database import Base, async_session, engine
from app.models import Article

TOPICS = ["python", "fastapi", "postgresql", "redis", "grpc", "kubernetes",
          "observability", "resilience", "retries", "timeouts", "microservices"]


async def seed(author_ids: list[int], num_articles: int, reset: bool) -> None:
    print(f"Seeding {num_articles} articles for authors {author_ids}")
    start = time.perf_counter()

    async with engine.begin() as conn:
        if reset:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        batch_size = 500
        for batch_start in range(0, num_articles, batch_size):
            batch_end = min(batch_start + batch_size, num_articles)
            for i in range(batch_start, batch_end):
                created = datetime.now(timezone.utc) - timedelta(days=random.randint(0, 365))
                topic = random.choice(TOPICS)
                session.add(Article(
                    title=f"Article {i}: notes on {topic}",
                    content=f"This is the full content of article {i} about {topic}. " * 20,
                    author_id=random.choice(author_ids),
                    created_at=created,
                    updated_at=created,
                ))
            await session.flush()
            print(f"  Batch {batch_start}-{batch_end}: articles created")

        await session.commit()

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s")


def main():
    parser = argparse.ArgumentParser(description="Seed the article database")
    parser.add_argument("--authors", type=int, nargs="+", default=[1, 2, 3],
                        help="Author ids to spread articles across")
    parser.add_argument("--count", type=int, default=100, help="Number of articles")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate the table first")
    args = parser.parse_args()
    asyncio.run(seed(args.authors, args.count, args.reset))


if __name__ == "__main__":
    main()
