#!/usr/bin/env python3
"""
Local invocation script for the recipe feed handler.
Usage: python invoke_local.py [feed_url] [limit]

Examples:
  python invoke_local.py                                         # Default feed, default limit
  python invoke_local.py https://www.bonappetit.com/feed/rss 5   # Custom feed, 5 cards
"""

import json
import os
import sys

# Keep the snapshot next to the script unless the caller chose a location
os.environ.setdefault("SNAPSHOT_PATH", os.path.join(".cache", "last.json"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Import after environment variables are set
from recipe_feed.lambda_handler import lambda_handler


def invoke(feed_url: str | None = None, limit: str | None = None) -> bool:
    """Invoke the handler once and print the cards it returns."""
    params = {}
    if feed_url:
        params["feed"] = feed_url
    if limit:
        params["limit"] = limit

    event = {
        "httpMethod": "GET",
        "path": "/api/feed",
        "queryStringParameters": params or None,
    }

    print(f"\n{'='*70}")
    print(f"Feed: {feed_url or os.getenv('FEED_URL', '(default)')}")
    print(f"{'='*70}\n")

    response = lambda_handler(event, None)
    status = response["statusCode"]
    body = json.loads(response["body"]) if response["body"] else None

    print(f"Status: {status}  X-Cache: {response['headers'].get('X-Cache', '-')}\n")

    if isinstance(body, dict):
        print(f"ERROR: {body.get('error')}\n")
        return False

    for i, card in enumerate(body or [], 1):
        print(f"{i:2}. {card['title']}")
        print(f"    {card['image']}")
        print(f"    {card['pubDate']}  {card['link']}")
        if card["description"]:
            print(f"    {card['description']}")
        print()

    print(f"{'='*70}\n")
    return status == 200


if __name__ == "__main__":
    args = sys.argv[1:]
    ok = invoke(
        args[0] if len(args) > 0 else None,
        args[1] if len(args) > 1 else None,
    )
    sys.exit(0 if ok else 1)
