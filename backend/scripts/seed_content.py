#!/usr/bin/env python3
import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Tuple

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from greengarden.client.api_client import ContentApiClient, ContentApiError  # noqa: E402

GARDENING_SERVICES: List[Dict[str, Any]] = [
    {
        "name": "Lawn Mowing & Maintenance",
        "description": "Mowing with edge trimming, clipping removal and lawn pattern design.",
        "price": "From $30",
        "imageUrl": "https://images.unsplash.com/photo-1592417817098-8fd3d9eb14a5?w=800",
        "featured": True,
    },
    {
        "name": "Garden Design & Landscaping",
        "description": "Layout planning, plant selection, hardscaping, patios, paths and water features.",
        "price": "From $500",
        "imageUrl": "https://images.unsplash.com/photo-1558904541-efa843a96f01?w=800",
        "featured": True,
    },
    {
        "name": "Tree Surgery & Pruning",
        "description": "Pruning, crown reduction, tree removal and stump grinding by certified arborists.",
        "price": "From $150",
        "imageUrl": "https://images.unsplash.com/photo-1598902108854-10e335adac99?w=800",
    },
    {
        "name": "Hedge Trimming",
        "description": "Shaping and maintenance of all hedge types with clean lines and healthy growth.",
        "price": "From $45",
        "imageUrl": "https://images.unsplash.com/photo-1599629954294-21beb74271e9?w=800",
    },
    {
        "name": "Irrigation System Installation",
        "description": "Smart controllers, drip irrigation and sprinkler systems sized to your garden.",
        "price": "From $300",
        "imageUrl": "https://images.unsplash.com/photo-1594897030264-ab7d87efc473?w=800",
    },
    {
        "name": "Garden Clearance",
        "description": "Complete clearing of overgrown gardens, green waste removal included.",
        "price": "From $200",
        "imageUrl": "https://images.unsplash.com/photo-1591857177580-dc82b9ac4e1e?w=800",
    },
]

GARDENING_POSTS: List[Dict[str, Any]] = [
    {
        "title": "Preparing Your Garden for Winter",
        "excerpt": "A short checklist to protect beds, lawns and tender plants before the frost.",
        "body": "Mulch beds, lift tender bulbs, give the lawn a final high cut and drain irrigation lines.",
        "author": "Green Garden Team",
        "published": True,
    },
    {
        "title": "Choosing Drought-Tolerant Plants",
        "excerpt": "Plants that keep your garden green through dry summers.",
        "body": "Lavender, rosemary, ornamental grasses and sedums thrive with little watering once established.",
        "author": "Green Garden Team",
        "published": True,
    },
]


def _load_file(path: str) -> List[Tuple[str, Dict[str, Any]]]:
    """Read ``{"<kind>": [payload, ...]}`` into (kind, payload) pairs."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("seed file must contain a JSON object keyed by kind")
    items: List[Tuple[str, Dict[str, Any]]] = []
    for kind, payloads in data.items():
        for payload in payloads:
            items.append((str(kind), dict(payload)))
    return items


async def seed(args: argparse.Namespace) -> int:
    if args.file:
        items = _load_file(args.file)
    else:
        items = [("services", payload) for payload in GARDENING_SERVICES]
        items += [("blog", payload) for payload in GARDENING_POSTS]

    failures = 0
    async with ContentApiClient(args.base_url) as client:
        await client.login(args.username, args.password)
        for kind, payload in items:
            label = payload.get("name") or payload.get("title") or payload.get("authorName") or "item"
            if args.dry_run:
                print(f"Would create {kind}: {label}")
                continue
            try:
                created = await client.create(kind, payload)
            except ContentApiError as exc:
                failures += 1
                print(f"Error creating {kind} {label}: {exc}")
                continue
            print(f"Created {kind} #{created['id']}: {label}")
        await client.logout()

    print(f"Finished: {len(items) - failures} created, {failures} failed")
    return 1 if failures else 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Create Green Garden content through the admin API.")
    parser.add_argument("--base-url", default=os.getenv("CONTENT_API_URL", "http://localhost:8000"))
    parser.add_argument("--username", default=os.getenv("ADMIN_USERNAME", "admin"))
    parser.add_argument("--password", default=os.getenv("ADMIN_PASSWORD", "admin123"))
    parser.add_argument("--file", default="", help='Optional JSON file shaped like {"services": [...], "blog": [...]}.')
    parser.add_argument("--dry-run", action="store_true", help="List what would be created without writing.")
    args = parser.parse_args()
    try:
        return asyncio.run(seed(args))
    except ContentApiError as exc:
        print(f"Seeding aborted: {exc}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
