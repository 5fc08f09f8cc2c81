"""Normalization of raw feed items into recipe cards."""

import re
from datetime import UTC, datetime
from enum import Enum

from dateutil import parser as date_parser

from .logging_config import create_execution_logger
from .models import RawItem, RecipeCard

DEFAULT_TITLE = "Untitled Recipe"
DEFAULT_LINK = "#"
DEFAULT_PLACEHOLDER_IMAGE = "/placeholder-recipe.jpg"
DESCRIPTION_LIMIT = 160
ELLIPSIS = "..."
PREFERRED_WIDTH = "1280"

# Anything from "<" to the next ">"
TAG_PATTERN = re.compile(r"<[^>]*>")


class ImagePolicy(str, Enum):
    """What happens to items that have no title or no resolvable image."""

    DROP = "drop"
    PLACEHOLDER = "placeholder"


def resolve_image(item: RawItem) -> str:
    """Pick the display image for an item, or "" when none resolves.

    Thumbnail first, then the 1280-wide (or first) media content entry,
    then the enclosure.
    """
    for thumbnail in item.thumbnails:
        if thumbnail.url:
            return thumbnail.url

    if item.media_content:
        for media in item.media_content:
            if media.width == PREFERRED_WIDTH or PREFERRED_WIDTH in media.url:
                if media.url:
                    return media.url
                break
        else:
            if item.media_content[0].url:
                return item.media_content[0].url

    for enclosure in item.enclosures:
        if enclosure.url:
            return enclosure.url

    return ""


def clean_description(value: str | None) -> str:
    """Remove tags and cap the text at DESCRIPTION_LIMIT characters.

    Only the tags themselves are removed; entities and the text between
    tags (including script bodies) are kept as they are.
    """
    if not value:
        return ""

    text = TAG_PATTERN.sub("", value)

    if len(text) > DESCRIPTION_LIMIT:
        return text[:DESCRIPTION_LIMIT] + ELLIPSIS
    return text


def normalize_pub_date(value: str | None, now: datetime) -> str:
    """Return the publish date as ISO-8601, falling back to `now`."""
    if value and value.strip():
        try:
            published = date_parser.parse(value)
            if published.tzinfo is None:
                published = published.replace(tzinfo=UTC)
            return published.isoformat()
        except (ValueError, TypeError, OverflowError):
            pass
    return now.isoformat()


def normalize_item(
    item: RawItem,
    now: datetime | None = None,
    placeholder_image: str = DEFAULT_PLACEHOLDER_IMAGE,
) -> RecipeCard:
    """Map one raw item to a RecipeCard with every default applied."""
    now = now or datetime.now(UTC)
    title = (item.title or "").strip()
    link = (item.link or "").strip()

    return RecipeCard(
        title=title or DEFAULT_TITLE,
        image=resolve_image(item) or placeholder_image,
        description=clean_description(item.description),
        link=link or DEFAULT_LINK,
        pub_date=normalize_pub_date(item.published, now),
    )


def build_cards(
    items: list[RawItem],
    now: datetime | None = None,
    policy: ImagePolicy | str = ImagePolicy.DROP,
    placeholder_image: str = DEFAULT_PLACEHOLDER_IMAGE,
    execution_id: str | None = None,
) -> list[RecipeCard]:
    """Normalize a batch of items in feed order.

    Under the drop policy an item is kept only if its raw title and raw
    resolved image are both non-empty. Under the placeholder policy every
    item is kept with defaults filled in.
    """
    logger = create_execution_logger("normalizer", execution_id)
    policy = ImagePolicy(policy)
    now = now or datetime.now(UTC)

    cards = []
    dropped = 0
    for index, item in enumerate(items):
        try:
            if policy is ImagePolicy.DROP:
                if not (item.title or "").strip() or not resolve_image(item):
                    dropped += 1
                    logger.debug(
                        "Dropping item without title or image",
                        item_index=index,
                        item_title=item.title,
                    )
                    continue
            cards.append(normalize_item(item, now, placeholder_image))
        except Exception as e:
            dropped += 1
            logger.warning(
                f"Failed to normalize item {index}: {e}",
                item_index=index,
                error=str(e),
            )
            continue

    logger.info(
        "Normalized feed items",
        items_count=len(items),
        cards_count=len(cards),
        dropped_count=dropped,
        image_policy=policy.value,
    )
    return cards
