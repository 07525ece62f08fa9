"""Example device client: tracks a visit, creates a post and likes it within quota."""
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict

import requests

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app.aggregator import POST_CREATED, SHARE_POST  # noqa: E402
from backend.app.quota import JsonFileCounterStore, QuotaEnforcer  # noqa: E402
from backend.app.tracking import EventTracker, track_page_load  # noqa: E402

logger = logging.getLogger("device_client")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Simulate one device using the Scan & Go API")
    parser.add_argument(
        "--api-url",
        default=os.environ.get("SCANGO_API_URL", "http://127.0.0.1:8000"),
        help="Analytics API base URL (default: %(default)s or SCANGO_API_URL)",
    )
    parser.add_argument(
        "--state-file",
        default=os.environ.get("SCANGO_DEVICE_STATE", str(Path.home() / ".scango-device.json")),
        help="Device-local counter store (default: %(default)s or SCANGO_DEVICE_STATE)",
    )
    parser.add_argument("--source", default=None, help="Entry source, e.g. 'qr'")
    parser.add_argument("--content", default="Does anyone know if the library is open past 10 tonight?")
    return parser.parse_args()


def http_sink(api_url: str):
    def send(record: Dict[str, Any]) -> None:
        response = requests.post(f"{api_url}/events", json=record, timeout=10)
        response.raise_for_status()

    return send


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = parse_args()

    device = JsonFileCounterStore(args.state_file)
    quotas = QuotaEnforcer(device)
    tracker = EventTracker(device, http_sink(args.api_url))

    emitted = track_page_load(tracker, device, source=args.source)
    logger.info("Page load events: %s", ", ".join(emitted) or "none")

    if quotas.can_fetch():
        feed = requests.get(f"{args.api_url}/posts", timeout=10)
        feed.raise_for_status()
        quotas.record_fetch()
        logger.info("Feed has %d posts on the first page", len(feed.json()))
    else:
        logger.info("Refresh cooling down for %ds", quotas.fetch_wait_seconds())

    decision = quotas.can_post()
    if not decision.allowed:
        logger.info("Post limit reached. Try again in %ds", decision.wait_seconds)
        return

    response = requests.post(f"{args.api_url}/posts", json={"content": args.content}, timeout=10)
    response.raise_for_status()
    quotas.record_post()
    post = response.json()
    tracker.track(POST_CREATED)
    logger.info("Created post %s, %d more allowed in this window", post["id"], quotas.posts_remaining())

    if quotas.record_like(post["id"]):
        liked = requests.post(f"{args.api_url}/posts/{post['id']}/like", timeout=10)
        liked.raise_for_status()
        logger.info("Liked post, %d likes left for it", quotas.remaining_likes(post["id"]))

    tracker.track(SHARE_POST, post_id=post["id"])


if __name__ == "__main__":
    main()
