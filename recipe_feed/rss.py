"""RSS feed fetching and parsing for the recipe feed service."""

from typing import Any
from urllib.parse import urlparse

import feedparser
import requests
from feedparser.exceptions import CharacterEncodingOverride, NonXMLContentType

from .logging_config import create_execution_logger
from .models import MediaRef, RawItem

# Bozo exceptions feedparser raises for documents that still parsed cleanly
BENIGN_BOZO_EXCEPTIONS = (CharacterEncodingOverride, NonXMLContentType)


class FeedParseError(Exception):
    """Raised when a feed document is malformed or not a recognised feed."""


class FeedProcessor:
    """Fetches an RSS document and projects its items into RawItem records."""

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: str = "Recipe-Feed/1.0 (RSS recipe card service)",
        execution_id: str | None = None,
    ):
        """Initialize FeedProcessor with configuration.

        Args:
            timeout: HTTP request timeout in seconds
            user_agent: User-Agent header sent with every request
            execution_id: Execution ID for logging context
        """
        self.timeout = timeout
        self.logger = create_execution_logger("feed_processor", execution_id)
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": user_agent})

        self.logger.info("FeedProcessor initialized", timeout=timeout)

    def fetch_items(self, feed_url: str) -> list[RawItem]:
        """Fetch a feed and return its items.

        Raises:
            ValueError: If feed URL is not HTTP(S)
            requests.RequestException: If the download fails or times out
            FeedParseError: If the document cannot be parsed as a feed
        """
        content = self.fetch(feed_url)
        items = self.parse(content, feed_url)
        self.logger.log_feed_parsed(feed_url, len(items))
        return items

    def fetch(self, feed_url: str) -> bytes:
        """Download raw feed content.

        Args:
            feed_url: URL of the RSS feed

        Returns:
            Response body as bytes

        Raises:
            ValueError: If feed URL is not HTTP(S)
            requests.RequestException: If feed download fails
        """
        parsed_url = urlparse(feed_url)
        if parsed_url.scheme not in ("http", "https") or not parsed_url.netloc:
            error_msg = f"Feed URL must be an absolute HTTP(S) URL: {feed_url}"
            self.logger.error(error_msg, feed_url=feed_url, scheme=parsed_url.scheme)
            raise ValueError(error_msg)

        try:
            self.logger.info("Downloading feed content", feed_url=feed_url)
            response = self.session.get(feed_url, timeout=self.timeout)
            response.raise_for_status()
            self.logger.info(
                "Feed downloaded successfully",
                feed_url=feed_url,
                status_code=response.status_code,
                content_length=len(response.content),
            )
        except requests.RequestException as e:
            self.logger.error(
                f"Failed to download feed {feed_url}: {e}",
                feed_url=feed_url,
                error=str(e),
            )
            raise

        return response.content

    def parse(self, content: bytes | str, feed_url: str = "") -> list[RawItem]:
        """Parse feed content into RawItem records, preserving feed order.

        Raises:
            FeedParseError: If the XML is malformed or is not a feed
        """
        if isinstance(content, str):
            content = content.encode("utf-8")
        # Descriptions go to the normalizer as published; no HTML sanitizing here
        feed = feedparser.parse(content, sanitize_html=False)

        if feed.get("bozo"):
            exc = feed.get("bozo_exception")
            if not isinstance(exc, BENIGN_BOZO_EXCEPTIONS):
                self.logger.error(
                    f"Malformed feed document: {exc}",
                    feed_url=feed_url,
                    bozo_exception=str(exc),
                )
                raise FeedParseError(f"Malformed feed document: {exc}")
            self.logger.warning(
                f"Feed parsing warning: {exc}",
                feed_url=feed_url,
                bozo_exception=str(exc),
            )

        if not feed.get("version"):
            self.logger.error("Document is not a recognised feed", feed_url=feed_url)
            raise FeedParseError("Document is not a recognised RSS feed")

        items = [self.to_raw_item(entry) for entry in feed.entries]
        self.logger.debug(
            "Parsed feed document",
            feed_url=feed_url,
            feed_version=feed.get("version"),
            items_count=len(items),
        )
        return items

    def to_raw_item(self, entry: Any) -> RawItem:
        """Project a feedparser entry into a RawItem.

        Repeating media elements are always returned as lists, and attribute
        values stay strings.
        """
        return RawItem(
            title=_text(entry.get("title")),
            link=_text(entry.get("link")),
            description=_text(entry.get("summary")),
            published=_text(entry.get("published")),
            thumbnails=_media_refs(entry.get("media_thumbnail")),
            media_content=_media_refs(entry.get("media_content")),
            enclosures=[
                MediaRef(
                    url=_text(link.get("href")) or "",
                    type=_text(link.get("type")),
                )
                for link in _as_list(entry.get("links"))
                if link.get("rel") == "enclosure"
            ],
        )


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _media_refs(value: Any) -> list[MediaRef]:
    refs = []
    for attrs in _as_list(value):
        if not hasattr(attrs, "get"):
            continue
        refs.append(
            MediaRef(
                url=_text(attrs.get("url")) or "",
                width=_text(attrs.get("width")),
                medium=_text(attrs.get("medium")),
                type=_text(attrs.get("type")),
            )
        )
    return refs
