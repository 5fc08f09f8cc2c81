"""Data models for the recipe feed service."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class MediaRef:
    """A media reference attached to a feed item (thumbnail, content, enclosure).

    Attribute values are kept exactly as they appear in the feed, as strings.
    """

    url: str = ""
    width: str | None = None
    medium: str | None = None
    type: str | None = None


@dataclass
class RawItem:
    """Typed projection of one RSS item, before normalization."""

    title: str | None = None
    link: str | None = None
    description: str | None = None
    published: str | None = None
    thumbnails: list[MediaRef] = field(default_factory=list)
    media_content: list[MediaRef] = field(default_factory=list)
    enclosures: list[MediaRef] = field(default_factory=list)


@dataclass
class RecipeCard:
    """Represents a single recipe card served to the display client."""

    title: str
    image: str
    description: str
    link: str
    pub_date: str

    def to_dict(self) -> dict[str, str]:
        """Serialize to the JSON shape the display client expects."""
        return {
            "title": self.title,
            "image": self.image,
            "description": self.description,
            "link": self.link,
            "pubDate": self.pub_date,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecipeCard":
        """Build a card from its serialized form.

        Raises:
            KeyError: If a required field is missing
            TypeError: If a field is not a string
        """
        values = {
            "title": data["title"],
            "image": data["image"],
            "description": data.get("description", ""),
            "link": data.get("link", "#"),
            "pub_date": data["pubDate"],
        }
        for name, value in values.items():
            if not isinstance(value, str):
                raise TypeError(f"Card field {name} must be a string")
        return cls(**values)


@dataclass
class CacheEntry:
    """Most recent successfully normalized card set."""

    data: list[RecipeCard]
    timestamp: datetime
    feed_url: str = ""
