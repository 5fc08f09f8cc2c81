"""Shared fixtures for recipe feed tests."""

from datetime import UTC, datetime, timedelta

import pytest

from recipe_feed.models import MediaRef, RawItem, RecipeCard

RSS_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/">
  <channel>
    <title>Test Recipes</title>
    <link>https://recipes.example.com</link>
    <description>Recipes for testing</description>
    {items}
  </channel>
</rss>
"""


class FakeClock:
    """Controllable clock for cache and service tests."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC))


@pytest.fixture
def build_rss():
    """Return a function wrapping <item> markup in an RSS 2.0 document."""

    def _build(*items: str) -> bytes:
        return RSS_TEMPLATE.format(items="\n".join(items)).encode("utf-8")

    return _build


def make_raw_item(index: int, image: bool = True) -> RawItem:
    return RawItem(
        title=f"Recipe {index}",
        link=f"https://recipes.example.com/recipe-{index}",
        description=f"<p>Description for recipe {index}</p>",
        published="Wed, 01 May 2024 10:00:00 GMT",
        thumbnails=(
            [MediaRef(url=f"https://img.example.com/recipe-{index}.jpg")]
            if image
            else []
        ),
    )


def make_card(index: int) -> RecipeCard:
    return RecipeCard(
        title=f"Recipe {index}",
        image=f"https://img.example.com/recipe-{index}.jpg",
        description=f"Description for recipe {index}",
        link=f"https://recipes.example.com/recipe-{index}",
        pub_date="2024-05-01T10:00:00+00:00",
    )


@pytest.fixture
def raw_items():
    """Return a function producing `count` raw items with images."""

    def _raw_items(count: int) -> list[RawItem]:
        return [make_raw_item(i) for i in range(count)]

    return _raw_items


@pytest.fixture
def cards():
    """Return a function producing `count` recipe cards."""

    def _cards(count: int) -> list[RecipeCard]:
        return [make_card(i) for i in range(count)]

    return _cards


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake credentials so boto3 never reaches real AWS."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
