"""In-memory card cache with a durable last-good snapshot."""

import json
import os
import tempfile
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .logging_config import create_execution_logger
from .models import CacheEntry, RecipeCard


def utc_now() -> datetime:
    """Default cache clock."""
    return datetime.now(UTC)


def _cards_from_payload(payload) -> list[RecipeCard]:
    if not isinstance(payload, list):
        raise ValueError("Snapshot must contain a JSON array")
    return [RecipeCard.from_dict(item) for item in payload]


class FileSnapshotStore:
    """Keeps the last good card set in a local JSON file."""

    def __init__(self, path: str | Path, execution_id: str | None = None):
        self.path = Path(path)
        self.logger = create_execution_logger("card_cache", execution_id)

    def save(self, cards: list[RecipeCard]) -> None:
        """Write the snapshot atomically.

        Raises:
            OSError: If the file cannot be written
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps([card.to_dict() for card in cards], ensure_ascii=False)

        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def load(self) -> list[RecipeCard] | None:
        """Read the snapshot, or None when it is missing.

        Raises:
            OSError: If the file exists but cannot be read
            ValueError, KeyError, TypeError: If the contents are not a card list
        """
        if not self.path.exists():
            return None
        with open(self.path, "r", encoding="utf-8") as f:
            payload = json.load(f)
        return _cards_from_payload(payload)

    def __repr__(self) -> str:
        return f"FileSnapshotStore({str(self.path)!r})"


class S3SnapshotStore:
    """Keeps the last good card set as a JSON object in S3."""

    def __init__(
        self,
        bucket: str,
        key: str,
        aws_region: str = "us-east-1",
        execution_id: str | None = None,
    ):
        self.bucket = bucket
        self.key = key
        self.logger = create_execution_logger("card_cache", execution_id)
        self.s3 = boto3.client("s3", region_name=aws_region)

    def save(self, cards: list[RecipeCard]) -> None:
        """Upload the snapshot.

        Raises:
            ClientError: If the upload is rejected
        """
        body = json.dumps([card.to_dict() for card in cards], ensure_ascii=False)
        self.s3.put_object(
            Bucket=self.bucket,
            Key=self.key,
            Body=body.encode("utf-8"),
            ContentType="application/json",
        )

    def load(self) -> list[RecipeCard] | None:
        """Download the snapshot, or None when the object does not exist.

        Raises:
            ClientError: For S3 errors other than a missing object
            ValueError, KeyError, TypeError: If the contents are not a card list
        """
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=self.key)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code in ("NoSuchKey", "404", "NoSuchBucket"):
                return None
            raise
        payload = json.loads(response["Body"].read().decode("utf-8"))
        return _cards_from_payload(payload)

    def __repr__(self) -> str:
        return f"S3SnapshotStore(s3://{self.bucket}/{self.key})"


# Errors a snapshot backend may raise; all of them degrade to "no snapshot"
SNAPSHOT_ERRORS = (
    OSError,
    ValueError,
    KeyError,
    TypeError,
    ClientError,
    BotoCoreError,
)


class CardCache:
    """Single-slot cache of the most recent card set.

    The entry is replaced as a whole on every successful refresh and is
    written through to the snapshot store, if one is configured.
    """

    def __init__(
        self,
        ttl: timedelta,
        max_items: int = 20,
        snapshot: FileSnapshotStore | S3SnapshotStore | None = None,
        clock: Callable[[], datetime] = utc_now,
        execution_id: str | None = None,
    ):
        if max_items <= 0:
            raise ValueError("max_items must be positive")
        self.ttl = ttl
        self.max_items = max_items
        self.snapshot = snapshot
        self.clock = clock
        self.logger = create_execution_logger("card_cache", execution_id)
        self._entry: CacheEntry | None = None
        self._lock = threading.Lock()

    @property
    def entry(self) -> CacheEntry | None:
        return self._entry

    def now(self) -> datetime:
        return self.clock()

    def is_fresh(
        self,
        now: datetime | None = None,
        ttl: timedelta | None = None,
        feed_url: str | None = None,
    ) -> bool:
        """True iff an entry exists and is younger than the TTL.

        When feed_url is given, the entry must also have come from that feed.
        """
        entry = self._entry
        if entry is None:
            return False
        if feed_url is not None and entry.feed_url != feed_url:
            return False
        now = now or self.clock()
        ttl = self.ttl if ttl is None else ttl
        return now - entry.timestamp < ttl

    def get(self, limit: int | None = None) -> list[RecipeCard]:
        entry = self._entry
        if entry is None:
            return []
        if limit is None:
            return list(entry.data)
        return entry.data[: max(limit, 0)]

    def update(
        self,
        cards: list[RecipeCard],
        now: datetime | None = None,
        feed_url: str = "",
    ) -> None:
        """Replace the stored entry, keeping at most max_items cards."""
        entry = CacheEntry(
            data=list(cards[: self.max_items]),
            timestamp=now or self.clock(),
            feed_url=feed_url,
        )
        with self._lock:
            self._entry = entry
        self.logger.info(
            "Cache updated",
            feed_url=feed_url,
            cards_count=len(entry.data),
            cache_timestamp=entry.timestamp.isoformat(),
        )
        self.persist()

    def clear(self) -> None:
        with self._lock:
            self._entry = None

    def persist(self) -> bool:
        """Write the current entry to the snapshot store.

        Returns:
            True if a snapshot was written, False otherwise
        """
        entry = self._entry
        if self.snapshot is None or entry is None:
            return False
        try:
            self.snapshot.save(entry.data)
        except SNAPSHOT_ERRORS as e:
            self.logger.warning(
                f"Failed to persist snapshot to {self.snapshot!r}: {e}",
                error=str(e),
            )
            return False
        self.logger.debug(
            "Snapshot persisted", snapshot=repr(self.snapshot), cards_count=len(entry.data)
        )
        return True

    def load_persisted(self) -> list[RecipeCard] | None:
        """Read the last good card set from the snapshot store.

        Returns:
            The stored cards, or None if there is no usable snapshot
        """
        if self.snapshot is None:
            return None
        try:
            cards = self.snapshot.load()
        except SNAPSHOT_ERRORS as e:
            self.logger.warning(
                f"Failed to load snapshot from {self.snapshot!r}: {e}",
                error=str(e),
            )
            return None
        if cards is None:
            self.logger.info("No snapshot available", snapshot=repr(self.snapshot))
        return cards
