"""Lambda HTTP handler serving recipe cards to the display client."""

import json
import os
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

import boto3

from .cache import CardCache, FileSnapshotStore, S3SnapshotStore
from .config import Config
from .logging_config import create_execution_logger, setup_structured_logging
from .rss import FeedProcessor
from .service import FeedResult, FeedService, FeedStatus

# Setup structured logging
setup_structured_logging(os.getenv("LOG_LEVEL", "INFO"))

METRICS_NAMESPACE = "Recipe-Feed"
HEALTH_PATHS = ("/health", "/test")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
}

PREFLIGHT_HEADERS = {
    **CORS_HEADERS,
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

# Process-lifetime state, kept across invocations of a warm environment
_config: Config | None = None
_service: FeedService | None = None


def get_config() -> Config:
    """Return the configuration for this execution environment."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def get_service() -> FeedService:
    """Return the feed service for this execution environment."""
    global _service
    if _service is None:
        _service = build_service(get_config())
    return _service


def reset_runtime() -> None:
    """Drop the cached configuration and service (next call rebuilds them)."""
    global _config, _service
    _config = None
    _service = None


def build_snapshot_store(
    config: Config, execution_id: str | None = None
) -> FileSnapshotStore | S3SnapshotStore | None:
    """Pick the durable snapshot backend from configuration."""
    snapshot_config = config.get_snapshot_config()
    if snapshot_config.bucket:
        return S3SnapshotStore(
            snapshot_config.bucket,
            snapshot_config.key,
            aws_region=snapshot_config.region,
            execution_id=execution_id,
        )
    if snapshot_config.path:
        return FileSnapshotStore(snapshot_config.path, execution_id=execution_id)
    return None


def build_service(config: Config, execution_id: str | None = None) -> FeedService:
    """Wire the cache, processor and service from configuration."""
    cache_config = config.get_cache_config()
    fetch_config = config.get_fetch_config()

    cache = CardCache(
        ttl=cache_config.ttl,
        max_items=cache_config.max_items,
        snapshot=build_snapshot_store(config, execution_id),
        execution_id=execution_id,
    )
    processor = FeedProcessor(
        timeout=fetch_config.timeout,
        user_agent=fetch_config.user_agent,
        execution_id=execution_id,
    )
    return FeedService(
        cache=cache,
        processor=processor,
        default_feed_url=fetch_config.feed_url,
        default_limit=cache_config.max_items,
        image_policy=config.image_policy,
        placeholder_image=config.placeholder_image,
        wait_timeout=fetch_config.timeout,
        execution_id=execution_id,
    )


def parse_limit(value: str | None) -> int | None:
    """Parse the `limit` query parameter.

    Raises:
        ValueError: If the value is not a positive integer
    """
    if value is None or not str(value).strip():
        return None
    try:
        limit = int(str(value).strip())
    except ValueError:
        raise ValueError(f"limit must be a positive integer, got {value!r}")
    if limit < 1:
        raise ValueError(f"limit must be a positive integer, got {value!r}")
    return limit


def parse_feed_url(value: str | None) -> str | None:
    """Parse the `feed` query parameter.

    Raises:
        ValueError: If the value is not an absolute HTTP(S) URL
    """
    if value is None or not value.strip():
        return None
    feed_url = value.strip()
    parsed = urlparse(feed_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"feed must be an absolute HTTP(S) URL, got {value!r}")
    return feed_url


def _request_method(event: dict[str, Any]) -> str:
    method = event.get("httpMethod")
    if not method:
        method = event.get("requestContext", {}).get("http", {}).get("method")
    return (method or "GET").upper()


def _request_path(event: dict[str, Any]) -> str:
    return event.get("rawPath") or event.get("path") or "/"


def _response(
    status_code: int, body: Any = None, headers: dict[str, str] | None = None
) -> dict[str, Any]:
    response_headers = dict(headers or CORS_HEADERS)
    if body is None:
        payload = ""
    else:
        response_headers["Content-Type"] = "application/json"
        payload = json.dumps(body, ensure_ascii=False)
    return {"statusCode": status_code, "headers": response_headers, "body": payload}


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    Lambda handler for the recipe feed endpoint.

    Args:
        event: API Gateway (REST or HTTP API) or function URL event
        context: Lambda context object

    Returns:
        HTTP response with a JSON card list or a JSON error object
    """
    execution_id = f"lambda_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S_%f')}"
    main_logger = create_execution_logger("main", execution_id)

    event = event or {}
    method = _request_method(event)
    path = _request_path(event)

    main_logger.log_request_start(
        method, path, getattr(context, "aws_request_id", "unknown")
    )

    if method == "OPTIONS":
        main_logger.log_request_end(200)
        return _response(200, headers=PREFLIGHT_HEADERS)

    if method != "GET":
        main_logger.warning(f"Method not allowed: {method}", http_method=method)
        main_logger.log_request_end(405)
        return _response(
            405,
            {"error": f"Method {method} not allowed"},
            headers={**CORS_HEADERS, "Allow": "GET, OPTIONS"},
        )

    if path.rstrip("/").endswith(HEALTH_PATHS):
        main_logger.log_request_end(200)
        return _response(
            200,
            {
                "message": "API is working!",
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )

    params = event.get("queryStringParameters") or {}
    try:
        limit = parse_limit(params.get("limit"))
        feed_url = parse_feed_url(params.get("feed"))
    except ValueError as e:
        main_logger.warning(f"Invalid request: {e}", error=str(e))
        main_logger.log_request_end(400)
        return _response(400, {"error": str(e)})

    try:
        config = get_config()
        service = get_service()
        result = service.get_cards(feed_url=feed_url, limit=limit)
    except Exception as e:
        error_msg = f"Critical error in Lambda handler: {str(e)}"
        main_logger.exception(error_msg, error=str(e))
        main_logger.log_request_end(500, error=error_msg)
        return _response(500, {"error": "Internal server error"})

    metrics = build_metrics(result)
    main_logger.log_request_metrics(metrics)

    if config.metrics_enabled:
        send_cloudwatch_metrics(metrics, config.aws_region, execution_id)

    main_logger.log_request_end(result.status_code, cache_status=result.status.value)
    return _response(
        result.status_code,
        result.body(),
        headers={**CORS_HEADERS, "X-Cache": result.status.value},
    )


def build_metrics(result: FeedResult) -> dict[str, Any]:
    """Summarize one request for logging and CloudWatch."""
    return {
        "cache_status": result.status.value,
        "cards_returned": len(result.cards),
        "status_code": result.status_code,
        "shared_refresh": result.shared,
        "error": result.error,
    }


def send_cloudwatch_metrics(
    metrics: dict[str, Any], aws_region: str, execution_id: str
) -> None:
    """
    Send custom metrics to CloudWatch.

    Args:
        metrics: Dictionary produced by build_metrics
        aws_region: AWS region for CloudWatch client
        execution_id: Execution ID for logging context
    """
    metrics_logger = create_execution_logger("cloudwatch_metrics", execution_id)

    try:
        metrics_logger.info("Sending metrics to CloudWatch", metrics=metrics)
        cloudwatch = boto3.client("cloudwatch", region_name=aws_region)

        status = metrics["cache_status"]
        dimensions = [{"Name": "Service", "Value": "recipe-feed"}]

        metric_data = [
            {
                "MetricName": "CacheHit",
                "Value": 1 if status == FeedStatus.FRESH.value else 0,
                "Unit": "Count",
                "Dimensions": dimensions,
            },
            {
                "MetricName": "FeedRefresh",
                "Value": 1 if status == FeedStatus.REFRESHED.value else 0,
                "Unit": "Count",
                "Dimensions": dimensions,
            },
            {
                "MetricName": "FallbackServed",
                "Value": (
                    1
                    if status in (FeedStatus.STALE.value, FeedStatus.SNAPSHOT.value)
                    else 0
                ),
                "Unit": "Count",
                "Dimensions": dimensions,
            },
            {
                "MetricName": "FeedUnavailable",
                "Value": 1 if status == FeedStatus.UNAVAILABLE.value else 0,
                "Unit": "Count",
                "Dimensions": dimensions,
            },
            {
                "MetricName": "CardsReturned",
                "Value": metrics["cards_returned"],
                "Unit": "Count",
                "Dimensions": [
                    *dimensions,
                    {"Name": "CacheStatus", "Value": status},
                ],
            },
        ]

        cloudwatch.put_metric_data(Namespace=METRICS_NAMESPACE, MetricData=metric_data)

        metrics_logger.info(
            "Successfully sent metrics to CloudWatch",
            metrics_sent=len(metric_data),
            namespace=METRICS_NAMESPACE,
        )

    except Exception as e:
        metrics_logger.error(f"Failed to send CloudWatch metrics: {e}", error=str(e))
        # Don't raise - metrics failure shouldn't break the response
