"""Configuration management for the recipe feed service."""

import os
from dataclasses import dataclass
from datetime import timedelta


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e
    if parsed <= 0:
        raise ValueError(f"{name} must be positive, got {parsed}")
    return parsed


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {value!r}") from e
    if parsed <= 0:
        raise ValueError(f"{name} must be positive, got {parsed}")
    return parsed


@dataclass
class CacheConfig:
    """Configuration for the in-memory card cache."""

    ttl_minutes: float = 15
    max_items: int = 20

    @property
    def ttl(self) -> timedelta:
        return timedelta(minutes=self.ttl_minutes)


@dataclass
class FetchConfig:
    """Configuration for outbound feed requests."""

    feed_url: str
    timeout: float = 10.0
    user_agent: str = "Recipe-Feed/1.0 (RSS recipe card service)"


@dataclass
class SnapshotConfig:
    """Configuration for the durable last-good snapshot."""

    path: str | None = "/tmp/last.json"
    bucket: str | None = None
    key: str = "recipe-feed/last.json"
    region: str = "us-east-1"


class Config:
    """Main configuration manager."""

    DEFAULT_FEED_URL = "https://www.bonappetit.com/feed/latest"
    DEFAULT_PLACEHOLDER_IMAGE = "/placeholder-recipe.jpg"
    IMAGE_POLICIES = ("drop", "placeholder")

    def __init__(self):
        """Initialize configuration from environment variables."""
        self.feed_url = os.getenv("FEED_URL", "").strip() or self.DEFAULT_FEED_URL
        self.cache_minutes = _env_float("CACHE_MINUTES", 15)
        self.max_items = _env_int("MAX_ITEMS", 20)
        self.fetch_timeout = _env_float("FETCH_TIMEOUT_SECONDS", 10.0)
        self.placeholder_image = (
            os.getenv("PLACEHOLDER_IMAGE", "").strip()
            or self.DEFAULT_PLACEHOLDER_IMAGE
        )
        self.image_policy = (
            os.getenv("MISSING_IMAGE_POLICY", "drop").strip().lower() or "drop"
        )
        if self.image_policy not in self.IMAGE_POLICIES:
            raise ValueError(
                f"MISSING_IMAGE_POLICY must be one of {self.IMAGE_POLICIES}, "
                f"got {self.image_policy!r}"
            )
        self.snapshot_path = os.getenv("SNAPSHOT_PATH", "/tmp/last.json").strip()
        self.snapshot_bucket = os.getenv("SNAPSHOT_BUCKET", "").strip()
        self.snapshot_key = (
            os.getenv("SNAPSHOT_KEY", "").strip() or "recipe-feed/last.json"
        )
        self.metrics_enabled = _env_bool("METRICS_ENABLED", False)
        self.aws_region = os.getenv(
            "CURRENT_AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1")
        )
        self.log_level = os.getenv("LOG_LEVEL", "INFO")

    def get_cache_config(self) -> CacheConfig:
        """Get cache configuration."""
        return CacheConfig(ttl_minutes=self.cache_minutes, max_items=self.max_items)

    def get_fetch_config(self) -> FetchConfig:
        """Get outbound fetch configuration."""
        return FetchConfig(feed_url=self.feed_url, timeout=self.fetch_timeout)

    def get_snapshot_config(self) -> SnapshotConfig:
        """Get durable snapshot configuration."""
        return SnapshotConfig(
            path=self.snapshot_path or None,
            bucket=self.snapshot_bucket or None,
            key=self.snapshot_key,
            region=self.aws_region,
        )
