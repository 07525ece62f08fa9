"""Fill the feed with demo posts: text-only and image posts spread over two weeks."""
from __future__ import annotations

import argparse
import logging
import random
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Tuple

from sqlalchemy import delete
from sqlalchemy.orm import Session

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app import schemas, store  # noqa: E402
from backend.app.database import init_schema, session_scope  # noqa: E402
from backend.app.models import Post  # noqa: E402
from backend.app.timewindow import utc_now  # noqa: E402

logger = logging.getLogger("seed_posts")

MAX_SEED_LIKES = 42
SPREAD = timedelta(days=14)

TEXT_POSTS = [
    "Just got out of the longest lecture ever... 3 hours of databases",
    "Does anyone know if the library is open past 10 tonight? Need to finish this paper.",
    "Hot take: morning classes before 9am should be illegal.",
    "Finally submitted my thesis draft. I can see colors again",
    "Looking for a study group for the algorithms exam next week. Anyone interested?",
    "The wifi in Building C is absolutely terrible today. Anyone else having issues?",
    "Pro tip: the coffee from the machine on the 3rd floor is way better than the cafeteria one",
    "Just found out the deadline got extended by a week. Best news all semester.",
    "If anyone finds a blue notebook in lecture hall 204, it's mine!",
    "Who else is going to the open mic night on Friday?",
    "Can someone explain recursion to me like I'm five? Asking for myself.",
    "Note to self: starting an assignment the night before it's due is not a viable strategy.",
    "The vending machine ate my money again. Third time this month.",
    "Just discovered the quiet study room on the 4th floor. Game changer.",
    "To whoever left cookies in the common room: thank you",
]

IMAGE_POSTS: List[Tuple[str, str]] = [
    ("Campus looking beautiful today", "https://picsum.photos/seed/campus1/800/600"),
    ("My study setup for finals week. Wish me luck!", "https://picsum.photos/seed/study1/800/600"),
    ("The architecture of the new building is incredible", "https://picsum.photos/seed/building1/800/1000"),
    ("Found this view between classes", "https://picsum.photos/seed/view1/800/500"),
    ("Sunset from the library rooftop", "https://picsum.photos/seed/sunset1/800/500"),
    ("The courtyard after the rain is so peaceful", "https://picsum.photos/seed/rain1/800/600"),
    ("Late night study grind", "https://picsum.photos/seed/night1/800/600"),
    ("Check out this mural I found in the hallway", "https://picsum.photos/seed/mural1/800/1100"),
]


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Insert demo posts into the Scan & Go feed")
    parser.add_argument("--clean", action="store_true", help="Delete every existing post first")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for repeatable likes and dates")
    return parser.parse_args()


def demo_posts() -> List[schemas.PostIn]:
    posts = [schemas.PostIn(content=content) for content in TEXT_POSTS]
    posts.extend(
        schemas.PostIn(content=content, media_url=media_url, media_type="image")
        for content, media_url in IMAGE_POSTS
    )
    return posts


def seed_posts(
    db: Session,
    rng: random.Random,
    clean: bool = False,
    now: Optional[datetime] = None,
) -> List[Post]:
    """Insert the demo posts in shuffled order, each with random likes and age."""
    now = now or utc_now()
    if clean:
        removed = db.execute(delete(Post)).rowcount
        logger.info("Deleted %d existing posts", removed)

    posts_in = demo_posts()
    rng.shuffle(posts_in)

    created = []
    for post_in in posts_in:
        post = store.create_post(db, post_in)
        post.likes = rng.randint(0, MAX_SEED_LIKES)
        post.created_at = now - SPREAD * rng.random()
        created.append(post)
    db.flush()
    return created


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = parse_args()

    init_schema()
    with session_scope() as db:
        created = seed_posts(db, random.Random(args.seed), clean=args.clean)
        logger.info(
            "Inserted %d posts (%d text-only, %d with images)",
            len(created),
            len(TEXT_POSTS),
            len(IMAGE_POSTS),
        )


if __name__ == "__main__":
    main()
