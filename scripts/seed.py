"""Seed the blog database and rebuild the posts search index from it."""
import argparse
import asyncio
import logging
import random
import time

from blogcore.database import Base, async_session, engine
from blogcore.models import Category, Post, User
from blogcore.search_index import PostsSearchIndex
from blogcore.services.post_service import rebuild_search_index

CATEGORIES = ["python", "fastapi", "postgresql", "elasticsearch", "s3", "docker",
              "testing", "performance", "security", "devops"]

WORDS = ("consistency index bucket cursor search paragraph title author draft "
         "replica commit rollback cache stream latency request").split()


def _sentence(rng: random.Random, n: int = 12) -> str:
    return " ".join(rng.choice(WORDS) for _ in range(n)).capitalize() + "."


async def seed(small: bool = False, reindex: bool = True, seed_value: int = 7):
    rng = random.Random(seed_value)
    num_users = 5 if small else 50
    num_posts = 100 if small else 5000

    print(f"Seeding: {num_users} users, {num_posts} posts")
    start = time.perf_counter()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        categories = [Category(name=name) for name in CATEGORIES]
        session.add_all(categories)

        users = [
            User(email=f"user_{i:04d}@example.com", name=f"User {i}")
            for i in range(num_users)
        ]
        session.add_all(users)
        await session.flush()
        print(f"  Created {len(categories)} categories, {len(users)} users")

        batch_size = 500
        for batch_start in range(0, num_posts, batch_size):
            for i in range(batch_start, min(batch_start + batch_size, num_posts)):
                post = Post(
                    title=f"Post {i}: notes on {rng.choice(CATEGORIES)}",
                    paragraphs=[_sentence(rng) for _ in range(rng.randint(1, 4))],
                    author_id=rng.choice(users).id,
                )
                post.categories = rng.sample(categories, k=rng.randint(0, 3))
                session.add(post)
            await session.flush()
            print(f"  Batch {batch_start}-{min(batch_start + batch_size, num_posts)}: posts created")

        await session.commit()

    if reindex:
        index = PostsSearchIndex()
        await index.connect()
        try:
            async with async_session() as session:
                result = await rebuild_search_index(session, index)
            print(f"  Search index: {result['indexed']} indexed, {result['failed']} failed, "
                  f"{result['removed']} stale removed")
        finally:
            await index.disconnect()

    print(f"\nSeeding complete in {time.perf_counter() - start:.1f}s")


def main():
    parser = argparse.ArgumentParser(description="Seed the blog database")
    parser.add_argument("--small", action="store_true", help="Use small dataset (100 posts)")
    parser.add_argument("--no-reindex", action="store_true", help="Skip rebuilding the search index")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)
    asyncio.run(seed(small=args.small, reindex=not args.no_reindex))


if __name__ == "__main__":
    main()
