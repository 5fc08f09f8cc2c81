"""Feed service: cache check, refresh and fallback orchestration."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .cache import CardCache
from .logging_config import create_execution_logger
from .models import RecipeCard
from .normalize import DEFAULT_PLACEHOLDER_IMAGE, ImagePolicy, build_cards
from .rss import FeedProcessor
from .singleflight import SingleFlight

UNAVAILABLE_MESSAGE = "Failed to fetch RSS feed"


class FeedStatus(str, Enum):
    """Which path of the service produced a result."""

    FRESH = "fresh"
    REFRESHED = "refreshed"
    STALE = "stale"
    SNAPSHOT = "snapshot"
    UNAVAILABLE = "unavailable"


@dataclass
class FeedResult:
    """Cards returned for one request and how they were obtained."""

    cards: list[RecipeCard]
    status: FeedStatus
    error: str | None = None
    shared: bool = field(default=False, compare=False)

    @property
    def status_code(self) -> int:
        if self.status in (FeedStatus.SNAPSHOT, FeedStatus.UNAVAILABLE):
            return 503
        return 200

    @property
    def degraded(self) -> bool:
        return self.status in (
            FeedStatus.STALE,
            FeedStatus.SNAPSHOT,
            FeedStatus.UNAVAILABLE,
        )

    def body(self) -> list[dict[str, str]] | dict[str, str]:
        """JSON-serializable response body."""
        if self.status is FeedStatus.UNAVAILABLE:
            return {"error": self.error or UNAVAILABLE_MESSAGE}
        return [card.to_dict() for card in self.cards]


class FeedService:
    """Serves recipe cards from the cache, refreshing from the feed when stale."""

    def __init__(
        self,
        cache: CardCache,
        processor: FeedProcessor,
        default_feed_url: str,
        default_limit: int | None = None,
        image_policy: ImagePolicy | str = ImagePolicy.DROP,
        placeholder_image: str = DEFAULT_PLACEHOLDER_IMAGE,
        single_flight: SingleFlight | None = None,
        wait_timeout: float | None = None,
        execution_id: str | None = None,
    ):
        self.cache = cache
        self.processor = processor
        self.default_feed_url = default_feed_url
        self.default_limit = default_limit or cache.max_items
        self.image_policy = ImagePolicy(image_policy)
        self.placeholder_image = placeholder_image
        self.single_flight = single_flight or SingleFlight()
        self.wait_timeout = wait_timeout
        self.logger = create_execution_logger("feed_service", execution_id)

    def get_cards(
        self, feed_url: str | None = None, limit: int | None = None
    ) -> FeedResult:
        """Return up to `limit` cards for `feed_url`.

        Never raises for source failures: a failed refresh falls back to the
        in-memory entry, then to the durable snapshot, then to an
        unavailable result.
        """
        feed_url = feed_url or self.default_feed_url
        limit = self.default_limit if limit is None else limit
        now = self.cache.now()

        if self.cache.is_fresh(now, feed_url=feed_url):
            result = FeedResult(self.cache.get(limit), FeedStatus.FRESH)
            self.logger.log_cache_decision(feed_url, result.status.value, len(result.cards))
            return result

        try:
            cards, shared = self.single_flight.do(
                feed_url,
                lambda: self.refresh(feed_url, now),
                timeout=self.wait_timeout,
            )
        except Exception as e:
            return self._fallback(feed_url, limit, e)

        # Sliced from this refresh's own cards; the shared slot may already
        # hold another feed
        result = FeedResult(
            cards[: max(limit, 0)], FeedStatus.REFRESHED, shared=shared
        )
        self.logger.log_cache_decision(feed_url, result.status.value, len(result.cards))
        return result

    def refresh(
        self, feed_url: str, now: datetime | None = None
    ) -> list[RecipeCard]:
        """Fetch, normalize and store the feed.

        Returns:
            The cards stored, capped to the cache's max_items

        Raises:
            Exception: Any fetch, parse or normalization failure
        """
        now = now or self.cache.now()
        self.logger.info("Refreshing feed", feed_url=feed_url)
        items = self.processor.fetch_items(feed_url)
        cards = build_cards(
            items,
            now=now,
            policy=self.image_policy,
            placeholder_image=self.placeholder_image,
            execution_id=self.logger.execution_id,
        )
        stored = cards[: self.cache.max_items]
        self.cache.update(stored, now=now, feed_url=feed_url)
        self.logger.info(
            f"Successfully parsed {len(cards)} recipes",
            feed_url=feed_url,
            cards_count=len(cards),
            cards_stored=len(stored),
        )
        return stored

    def _fallback(self, feed_url: str, limit: int, error: Exception) -> FeedResult:
        self.logger.error(
            f"Error fetching RSS feed: {error}",
            feed_url=feed_url,
            error=str(error),
            error_type=type(error).__name__,
        )

        if self.cache.entry is not None:
            result = FeedResult(self.cache.get(limit), FeedStatus.STALE, error=str(error))
        else:
            snapshot = self.cache.load_persisted()
            if snapshot is not None:
                result = FeedResult(snapshot[:limit], FeedStatus.SNAPSHOT, error=str(error))
            else:
                result = FeedResult([], FeedStatus.UNAVAILABLE, error=UNAVAILABLE_MESSAGE)

        self.logger.log_cache_decision(feed_url, result.status.value, len(result.cards))
        return result
