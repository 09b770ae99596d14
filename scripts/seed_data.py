#!/usr/bin/env python3
"""
Seed script — builds a small dataset that exercises every feed.

Creates:
  • 10 users and a follow graph (each user follows 4 others)
  • 5 posts per user: text with hashtags, a few short videos, a long video
  • views with watch time (feeds the interest profiles), likes and comments

Run against a running API:
  python scripts/seed_data.py --api-url http://localhost:8000

Then run `feedrank-jobs refresh-trending` to flag trending hashtags.
"""
import argparse
import json
import random
import time
import urllib.error
import urllib.request
from dataclasses import dataclass


BASE_USERS = [
    ("alice_ai", "Alice Chen"),
    ("bob_builder", "Bob Martinez"),
    ("carol_codes", "Carol Singh"),
    ("dave_designs", "Dave Kim"),
    ("eve_engineer", "Eve Johnson"),
    ("frank_feeds", "Frank Williams"),
    ("grace_graphs", "Grace Li"),
    ("henry_hpc", "Henry Brown"),
    ("iris_infra", "Iris Davis"),
    ("jack_ml", "Jack Wilson"),
]

# (content, post_type, video_duration_seconds, category)
SAMPLE_POSTS = [
    ("Just shipped a new feature to production #devops #release", "text", None, "tech"),
    ("Sourdough attempt number four #baking #bread", "photo", None, "food"),
    ("30 second kettlebell routine #fitness", "video", 30, "fitness"),
    ("Morning run along the river #running #fitness", "short_video", None, "fitness"),
    ("Full conference talk on feed ranking #ml #ranking", "video", 1800, "tech"),
    ("Which framework should I learn next? #python", "poll", None, "tech"),
    ("Cat discovers the printer #cats", "short_video", None, "pets"),
    ("Weekend hike photos #outdoors #travel", "photo", None, "travel"),
    ("Hot take: tabs over spaces #python #devops", "text", None, "tech"),
    ("Quick pasta in 45 seconds #cooking", "video", 45, "food"),
    ("Our engagement scores finally make sense #ranking", "text", None, "tech"),
    ("Sunset timelapse #travel", "video", 58, "travel"),
]

SAMPLE_COMMENTS = ["Love this!", "Great point", "Saving for later", "Tried it, works", "🔥"]


@dataclass
class ApiClient:
    base_url: str

    def post(self, path: str, data: dict) -> dict:
        url = f"{self.base_url}{path}"
        body = json.dumps(data).encode()
        req = urllib.request.Request(
            url, data=body, headers={"Content-Type": "application/json"}, method="POST"
        )
        try:
            with urllib.request.urlopen(req, timeout=10) as resp:
                payload = resp.read()
                return json.loads(payload) if payload else {}
        except urllib.error.HTTPError as e:
            print(f"  HTTP {e.code} on POST {path}: {e.read().decode()}")
            return {}

    def get(self, path: str) -> dict:
        url = f"{self.base_url}{path}"
        req = urllib.request.Request(url, method="GET")
        try:
            with urllib.request.urlopen(req, timeout=10) as resp:
                return json.loads(resp.read())
        except urllib.error.HTTPError as e:
            print(f"  HTTP {e.code} on GET {path}")
            return {}


def wait_for_api(client: ApiClient, retries: int = 15) -> None:
    print(f"Waiting for API at {client.base_url} ...")
    for _ in range(retries):
        try:
            if client.get("/health").get("status") == "ok":
                print("  API is ready!\n")
                return
        except urllib.error.URLError:
            pass
        time.sleep(3)
    raise RuntimeError(f"API not reachable at {client.base_url} after {retries} retries")


def main(api_url: str, seed: int) -> None:
    rng = random.Random(seed)
    client = ApiClient(api_url)
    wait_for_api(client)

    # ── Users ────────────────────────────────────────────────────────────
    print("Creating users...")
    user_ids: list[str] = []
    for username, display_name in BASE_USERS:
        uid = client.post("/users/", {"username": username, "display_name": display_name}).get("user_id")
        if uid:
            user_ids.append(uid)
            print(f"  ✓ {username} ({uid})")
        else:
            print(f"  ✗ Failed to create {username}")

    if len(user_ids) < 2:
        print("Not enough users created — aborting")
        return

    # ── Follow graph ─────────────────────────────────────────────────────
    print("\nCreating follow relationships...")
    for follower_id in user_ids:
        others = [u for u in user_ids if u != follower_id]
        for followee_id in rng.sample(others, k=min(4, len(others))):
            client.post("/users/follow", {"follower_id": follower_id, "followee_id": followee_id})
    print("  ✓ Follow graph created")

    # ── Posts ────────────────────────────────────────────────────────────
    print("\nCreating posts...")
    post_ids: list[str] = []
    for user_id in user_ids:
        for content, post_type, duration, category in rng.sample(SAMPLE_POSTS, k=5):
            pid = client.post("/posts/", {
                "user_id": user_id,
                "content": content,
                "post_type": post_type,
                "video_duration_seconds": duration,
                "content_category": category,
            }).get("post_id")
            if pid:
                post_ids.append(pid)
    print(f"  ✓ {len(post_ids)} posts created")

    # ── Engagement ───────────────────────────────────────────────────────
    print("\nAdding views, likes and comments...")
    views = likes = comments = 0
    for post_id in post_ids:
        for user_id in rng.sample(user_ids, k=rng.randint(0, 6)):
            client.post(f"/posts/{post_id}/view", {
                "user_id": user_id,
                "watch_time_seconds": rng.randint(1, 60),
                "watch_percentage": round(rng.uniform(10, 100), 1),
            })
            views += 1
            if rng.random() < 0.5:
                client.post(f"/posts/{post_id}/like", {"user_id": user_id})
                likes += 1
            if rng.random() < 0.2:
                client.post(f"/posts/{post_id}/comment", {
                    "user_id": user_id, "body": rng.choice(SAMPLE_COMMENTS),
                })
                comments += 1
    print(f"  ✓ {views} views, {likes} likes, {comments} comments")

    # ── Summary ──────────────────────────────────────────────────────────
    print("\n" + "=" * 60)
    print("Seed complete! Some requests to try:\n")
    u = user_ids[0]
    for feed in ("for-you", "following", "shorts", "discover"):
        print(f"  curl -s '{api_url}/feed/{feed}?user_id={u}' | python3 -m json.tool")
    print(f"  curl -s '{api_url}/feed/trending' | python3 -m json.tool")
    print(f"  curl -s '{api_url}/users/{u}/interests' | python3 -m json.tool")
    print(f"  curl -s '{api_url}/hashtags/trending' | python3 -m json.tool")
    print("\n# Prometheus metrics: " + f"{api_url}/metrics")
    print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the feed ranking service")
    parser.add_argument("--api-url", default="http://localhost:8000", help="API base URL")
    parser.add_argument("--seed", type=int, default=42, help="Random seed for reproducible data")
    args = parser.parse_args()
    main(args.api_url, args.seed)
