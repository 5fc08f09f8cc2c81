"""Unit tests for the feed service orchestration."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest.mock import Mock

import pytest
import requests

from recipe_feed.cache import CardCache, FileSnapshotStore
from recipe_feed.normalize import DEFAULT_PLACEHOLDER_IMAGE
from recipe_feed.rss import FeedParseError
from recipe_feed.service import FeedService, FeedStatus

FEED_URL = "https://recipes.example.com/feed"
OTHER_FEED_URL = "https://other.example.com/feed"


@pytest.fixture
def processor(raw_items):
    processor = Mock()
    processor.fetch_items.return_value = raw_items(25)
    return processor


@pytest.fixture
def cache(clock):
    return CardCache(timedelta(minutes=15), max_items=20, clock=clock)


@pytest.fixture
def service(cache, processor):
    return FeedService(cache, processor, default_feed_url=FEED_URL)


class TestFreshAndRefreshPaths:
    """Serving from cache versus refreshing from the feed."""

    def test_first_request_refreshes(self, service, processor):
        result = service.get_cards()

        assert result.status is FeedStatus.REFRESHED
        assert result.status_code == 200
        assert len(result.cards) == 20
        processor.fetch_items.assert_called_once_with(FEED_URL)

    def test_request_within_ttl_uses_cache(self, service, processor, clock):
        """Test that T+14m59s is served from cache with no outbound fetch."""
        service.get_cards()
        clock.advance(minutes=14, seconds=59)

        result = service.get_cards()

        assert result.status is FeedStatus.FRESH
        assert processor.fetch_items.call_count == 1

    def test_request_after_ttl_fetches_once(self, service, processor, clock):
        """Test that T+15m01s triggers exactly one new fetch."""
        service.get_cards()
        clock.advance(minutes=15, seconds=1)

        result = service.get_cards()

        assert result.status is FeedStatus.REFRESHED
        assert processor.fetch_items.call_count == 2

    def test_limit_returns_prefix_without_shrinking_cache(self, service, cache):
        service.get_cards()

        result = service.get_cards(limit=3)

        assert result.status is FeedStatus.FRESH
        assert [c.title for c in result.cards] == ["Recipe 0", "Recipe 1", "Recipe 2"]
        assert len(cache.entry.data) == 20

    def test_small_limit_on_refresh_still_caches_maximum(self, service, cache):
        result = service.get_cards(limit=2)

        assert len(result.cards) == 2
        assert len(cache.entry.data) == 20

        larger = service.get_cards(limit=15)
        assert larger.status is FeedStatus.FRESH
        assert len(larger.cards) == 15

    def test_feed_override_is_fetched_and_default_unchanged(self, service, processor):
        service.get_cards()

        result = service.get_cards(feed_url=OTHER_FEED_URL)

        assert result.status is FeedStatus.REFRESHED
        processor.fetch_items.assert_called_with(OTHER_FEED_URL)
        assert service.default_feed_url == FEED_URL

    def test_refresh_stores_timestamp_of_request(self, service, cache, clock):
        service.get_cards()
        assert cache.entry.timestamp == clock()
        assert cache.entry.feed_url == FEED_URL

    def test_placeholder_policy(self, cache, processor, raw_items):
        items = raw_items(2)
        items[1].thumbnails = []
        processor.fetch_items.return_value = items
        service = FeedService(
            cache, processor, default_feed_url=FEED_URL, image_policy="placeholder"
        )

        result = service.get_cards()

        assert [c.image for c in result.cards][1] == DEFAULT_PLACEHOLDER_IMAGE

    def test_drop_policy_is_default(self, service, processor, raw_items):
        items = raw_items(3)
        items[1].thumbnails = []
        processor.fetch_items.return_value = items

        result = service.get_cards()

        assert [c.title for c in result.cards] == ["Recipe 0", "Recipe 2"]


class TestFallbackPath:
    """Degradation when the refresh fails."""

    @pytest.mark.parametrize(
        "error",
        [
            requests.ConnectionError("connection refused"),
            requests.Timeout("read timed out"),
            requests.HTTPError("502 Bad Gateway"),
            FeedParseError("Malformed feed document"),
        ],
    )
    def test_stale_cache_is_returned_unchanged(self, service, processor, cache, clock, error):
        service.get_cards()
        entry = cache.entry
        before = list(cache.get())
        clock.advance(minutes=30)
        processor.fetch_items.side_effect = error

        result = service.get_cards(limit=5)

        assert result.status is FeedStatus.STALE
        assert result.status_code == 200
        assert result.cards == before[:5]
        assert cache.entry is entry

    def test_snapshot_served_with_503_when_memory_empty(self, clock, cards, tmp_path):
        snapshot_path = tmp_path / "last.json"
        FileSnapshotStore(snapshot_path).save(cards(6))
        cache = CardCache(
            timedelta(minutes=15), snapshot=FileSnapshotStore(snapshot_path), clock=clock
        )
        processor = Mock()
        processor.fetch_items.side_effect = requests.ConnectionError("offline")
        service = FeedService(cache, processor, default_feed_url=FEED_URL)

        result = service.get_cards(limit=4)

        assert result.status is FeedStatus.SNAPSHOT
        assert result.status_code == 503
        assert result.cards == cards(4)
        assert isinstance(result.body(), list)
        assert cache.entry is None

    def test_total_unavailability(self, service, processor):
        processor.fetch_items.side_effect = requests.ConnectionError("offline")

        result = service.get_cards()

        assert result.status is FeedStatus.UNAVAILABLE
        assert result.status_code == 503
        assert result.cards == []
        assert result.body() == {"error": "Failed to fetch RSS feed"}

    def test_corrupt_snapshot_is_total_unavailability(self, clock, tmp_path):
        snapshot_path = tmp_path / "last.json"
        snapshot_path.write_text("garbage", encoding="utf-8")
        cache = CardCache(
            timedelta(minutes=15), snapshot=FileSnapshotStore(snapshot_path), clock=clock
        )
        processor = Mock()
        processor.fetch_items.side_effect = requests.Timeout("slow")
        service = FeedService(cache, processor, default_feed_url=FEED_URL)

        assert service.get_cards().status is FeedStatus.UNAVAILABLE

    def test_successful_refresh_writes_snapshot(self, clock, raw_items, tmp_path):
        store = FileSnapshotStore(tmp_path / "last.json")
        cache = CardCache(timedelta(minutes=15), snapshot=store, clock=clock)
        processor = Mock()
        processor.fetch_items.return_value = raw_items(3)
        service = FeedService(cache, processor, default_feed_url=FEED_URL)

        service.get_cards()

        assert [c.title for c in store.load()] == ["Recipe 0", "Recipe 1", "Recipe 2"]

    def test_failed_refresh_leaves_snapshot_untouched(self, clock, cards, tmp_path):
        store = FileSnapshotStore(tmp_path / "last.json")
        store.save(cards(2))
        cache = CardCache(timedelta(minutes=15), snapshot=store, clock=clock)
        processor = Mock()
        processor.fetch_items.side_effect = FeedParseError("bad xml")
        service = FeedService(cache, processor, default_feed_url=FEED_URL)

        service.get_cards()

        assert store.load() == cards(2)


class TestConcurrentRefresh:
    """Concurrent stale requests coalesce into one fetch."""

    def test_concurrent_requests_share_one_fetch(self, cache, raw_items):
        release = threading.Event()
        fetches = []

        def slow_fetch(feed_url):
            fetches.append(feed_url)
            release.wait(timeout=5)
            return raw_items(3)

        processor = Mock()
        processor.fetch_items.side_effect = slow_fetch
        service = FeedService(cache, processor, default_feed_url=FEED_URL)

        with ThreadPoolExecutor(max_workers=6) as executor:
            futures = [executor.submit(service.get_cards) for _ in range(6)]
            deadline = time.monotonic() + 5
            while not fetches and time.monotonic() < deadline:
                time.sleep(0.01)
            time.sleep(0.2)
            release.set()
            results = [future.result(timeout=5) for future in futures]

        assert len(fetches) == 1
        assert all(len(result.cards) == 3 for result in results)
        assert all(result.status_code == 200 for result in results)

    def test_slow_leader_sends_followers_to_fallback(self, cache, raw_items, cards):
        """Test that a follower stops waiting after wait_timeout and falls back."""
        release = threading.Event()
        started = threading.Event()

        def slow_fetch(feed_url):
            started.set()
            release.wait(timeout=5)
            return raw_items(3)

        cache.update(cards(2), now=cache.now() - timedelta(hours=1), feed_url=FEED_URL)
        processor = Mock()
        processor.fetch_items.side_effect = slow_fetch
        service = FeedService(
            cache, processor, default_feed_url=FEED_URL, wait_timeout=0.1
        )

        with ThreadPoolExecutor(max_workers=2) as executor:
            leader = executor.submit(service.get_cards)
            assert started.wait(timeout=5)
            follower = service.get_cards()
            release.set()
            leader_result = leader.result(timeout=5)

        assert follower.status is FeedStatus.STALE
        assert [c.title for c in follower.cards] == ["Recipe 0", "Recipe 1"]
        assert leader_result.status is FeedStatus.REFRESHED
        assert processor.fetch_items.call_count == 1


class TestInterleavedFeeds:
    """Refreshes of different feeds sharing the single cache slot."""

    def test_refresh_returns_its_own_feed_when_slot_is_overwritten(
        self, cache, raw_items
    ):
        """Test that feed A's caller gets A's cards even if B is stored last."""
        other_items = raw_items(2)
        for item in other_items:
            item.title = f"Other {item.title}"

        processor = Mock()
        processor.fetch_items.side_effect = lambda url: (
            raw_items(3) if url == FEED_URL else other_items
        )
        service = FeedService(cache, processor, default_feed_url=FEED_URL)
        other_results = []
        store = cache.update

        def update_then_refresh_other(cards, now=None, feed_url=""):
            store(cards, now=now, feed_url=feed_url)
            if feed_url == FEED_URL:
                other_results.append(service.get_cards(feed_url=OTHER_FEED_URL))

        cache.update = update_then_refresh_other

        result = service.get_cards()

        assert result.status is FeedStatus.REFRESHED
        assert [c.title for c in result.cards] == ["Recipe 0", "Recipe 1", "Recipe 2"]
        assert [c.title for c in other_results[0].cards] == [
            "Other Recipe 0",
            "Other Recipe 1",
        ]
        assert cache.entry.feed_url == OTHER_FEED_URL

    def test_refresh_returns_cards_capped_to_max_items(self, clock, raw_items):
        cache = CardCache(timedelta(minutes=15), max_items=5, clock=clock)
        processor = Mock()
        processor.fetch_items.return_value = raw_items(8)
        service = FeedService(cache, processor, default_feed_url=FEED_URL)

        stored = service.refresh(FEED_URL)

        assert [c.title for c in stored] == [f"Recipe {i}" for i in range(5)]
        assert service.get_cards(limit=50).cards == stored
