"""Lambda entry point for the RSS Arabic relay.

Handles EventBridge schedules and HTTP routes (API Gateway / Function URL):
``/check-rss``, ``/health``, ``/status``.
"""

import asyncio
import json
import os
from datetime import UTC, datetime
from typing import Any

import boto3
from botocore.exceptions import ClientError

from .config import Config
from .dedup import Deduplicator
from .errors import ConfigError, ErrorCode, RelayError
from .extractor import ContentExtractor
from .formatter import MessageFormatter
from .http_client import HttpClient
from .logging_config import create_execution_logger, setup_structured_logging
from .models import CycleResult, CycleState, DeliveryStatus, RewriteStrategy
from .pipeline import RelayPipeline, get_operational_stats
from .rewrite import RewriteEngine
from .rss import FeedProcessor
from .telegram import TelegramPublisher
from .telegraph import TelegraphPublisher

SERVICE_NAME = "RSS Arabic Relay"
VERSION = "2.0"
ENDPOINTS = ["/check-rss", "/health", "/status"]
METRICS_NAMESPACE = "RSS-Arabic-Relay"

setup_structured_logging(os.getenv("LOG_LEVEL", "INFO"))


def json_response(data: dict[str, Any], status_code: int = 200) -> dict[str, Any]:
    """
    Build an API Gateway / Function URL response with a JSON body.

    Args:
        data: Response payload
        status_code: HTTP status code

    Returns:
        Lambda proxy response dictionary
    """
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(data, ensure_ascii=False, default=str),
    }


def is_scheduled_event(event: dict[str, Any]) -> bool:
    """Whether the event comes from an EventBridge schedule."""
    return event.get("source") == "aws.events" or event.get("detail-type") == "Scheduled Event"


def request_path(event: dict[str, Any]) -> str:
    """
    Extract the request path from an HTTP event.

    Args:
        event: API Gateway (v1 or v2) or Function URL event

    Returns:
        ``rawPath`` or ``path``, defaulting to ``/``
    """
    return event.get("rawPath") or event.get("path") or "/"


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    Main Lambda handler; never lets an exception escape.

    Args:
        event: EventBridge or HTTP event
        context: Lambda context object

    Returns:
        Response dictionary with a JSON body
    """
    return asyncio.run(handle_event(event or {}, context))


async def handle_event(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Route one event; every failure becomes a 500 JSON response."""
    execution_id = f"lambda_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S_%f')}"
    main_logger = create_execution_logger("main", execution_id)
    scheduled = is_scheduled_event(event)
    path = "/check-rss" if scheduled else request_path(event)

    main_logger.log_execution_start(
        lambda_request_id=getattr(context, "aws_request_id", "unknown"),
        trigger="schedule" if scheduled else "http",
        path=path,
    )

    try:
        config = Config()
        config.validate()

        if path == "/check-rss":
            result = await run_check_cycle(config, execution_id)
            send_cloudwatch_metrics(result, config.aws_region, execution_id)
            main_logger.log_execution_end(
                success=result.status != "error", cycle_status=result.status
            )
            return json_response(
                result.to_dict(), 500 if result.status == "error" else 200
            )

        if path == "/health":
            return json_response(
                {
                    "status": "ok",
                    "timestamp": datetime.now(UTC).isoformat(),
                    "version": VERSION,
                }
            )

        if path == "/status":
            deduplicator = Deduplicator(
                config.dynamodb_table,
                config.aws_region,
                limits=config.limits,
                execution_id=execution_id,
            )
            return json_response(await get_operational_stats(deduplicator, main_logger))

        return json_response(
            {"service": SERVICE_NAME, "version": VERSION, "endpoints": ENDPOINTS}
        )

    except Exception as e:
        code = e.code.value if isinstance(e, RelayError) else ErrorCode.UNKNOWN_ERROR.value
        error_msg = f"Critical error in Lambda handler: {e}"
        main_logger.error(error_msg, error=str(e), code=code)
        main_logger.log_execution_end(success=False, error=error_msg)
        return json_response({"status": "error", "error": str(e), "code": code}, 500)


async def run_check_cycle(config: Config, execution_id: str) -> CycleResult:
    """Wire every component for one cycle and run it."""
    limits = config.limits

    telegram_config = config.get_telegram_config()
    if not telegram_config.bot_token:
        telegram_config.bot_token = await asyncio.to_thread(
            get_telegram_token,
            config.telegram_secret_name,
            config.aws_region,
            execution_id,
        )

    async with HttpClient(timeout=limits.request_timeout) as http:
        extractor = ContentExtractor(http, limits, execution_id)
        telegraph_config = config.get_telegraph_config()
        pipeline = RelayPipeline(
            feed_url=config.feed_url,
            feed_processor=FeedProcessor(http, limits, execution_id),
            deduplicator=Deduplicator(
                config.dynamodb_table,
                config.aws_region,
                limits=limits,
                execution_id=execution_id,
            ),
            rewrite_engine=RewriteEngine(
                config.get_gemini_config(), http, extractor, limits, execution_id
            ),
            formatter=MessageFormatter(limits, execution_id),
            telegram=TelegramPublisher(telegram_config, http, limits, execution_id),
            telegraph=(
                TelegraphPublisher(telegraph_config, http, execution_id)
                if telegraph_config
                else None
            ),
            execution_id=execution_id,
        )
        return await pipeline.run_check_cycle()


def get_telegram_token(secret_name: str, aws_region: str, execution_id: str) -> str:
    """
    Retrieve the Telegram bot token from AWS Secrets Manager.

    Accepts a plain-string secret or a JSON object holding ``token``,
    ``bot_token``, ``telegram_token`` or ``telegram_bot_token``. Never logs
    the secret value.

    Raises:
        ConfigError: If the secret cannot be retrieved or holds no token
    """
    secrets_logger = create_execution_logger("secrets_manager", execution_id)

    if not secret_name or not secret_name.strip():
        raise ConfigError("Secret name cannot be empty")

    try:
        secrets_logger.info(f"Retrieving Telegram token from Secrets Manager: {secret_name}")
        secrets_client = boto3.client("secretsmanager", region_name=aws_region)
        response = secrets_client.get_secret_value(SecretId=secret_name)
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        secrets_logger.error(
            f"AWS Secrets Manager error retrieving {secret_name}: {error_code}"
        )
        raise ConfigError(f"Failed to retrieve secret {secret_name}") from e

    secret_value = (response.get("SecretString") or "").strip()
    if not secret_value:
        raise ConfigError(f"Secret {secret_name} contains empty value")

    try:
        secret_data = json.loads(secret_value)
    except json.JSONDecodeError:
        return secret_value

    if not isinstance(secret_data, dict):
        raise ConfigError(f"JSON secret {secret_name} must be an object")

    for key in ("token", "bot_token", "telegram_token", "telegram_bot_token"):
        value = secret_data.get(key)
        if isinstance(value, str) and value.strip():
            secrets_logger.info("Successfully retrieved token from JSON secret")
            return value.strip()

    raise ConfigError(f"No Telegram token found in JSON secret {secret_name}")


def cycle_metrics(result: CycleResult) -> dict[str, Any]:
    """Flatten a cycle result into counters."""
    sent = sum(1 for r in result.delivery if r.status is DeliveryStatus.SUCCESS)
    return {
        "items_found": 1 if result.item_id else 0,
        "items_deduplicated": 1 if result.state is CycleState.DUPLICATE else 0,
        "items_rewritten": 1 if result.strategy else 0,
        "fallback_used": 1 if result.strategy is RewriteStrategy.EXTRACTION else 0,
        "messages_sent": sent,
        "messages_failed": len(result.delivery) - sent,
        "plain_text_fallbacks": sum(1 for r in result.delivery if r.plain_text),
        "errors": 1 if result.status == "error" else 0,
        "processing_time_ms": result.processing_time_ms,
    }


def send_cloudwatch_metrics(
    result: CycleResult, aws_region: str, execution_id: str
) -> None:
    """
    Send custom metrics for one cycle to CloudWatch.

    Failures are logged and swallowed.
    """
    metrics_logger = create_execution_logger("cloudwatch_metrics", execution_id)
    metrics = cycle_metrics(result)

    try:
        metrics_logger.log_metrics(metrics)
        cloudwatch = boto3.client("cloudwatch", region_name=aws_region)

        status_dimension = [
            {"Name": "Status", "Value": "Failure" if metrics["errors"] else "Success"}
        ]
        counters = {
            "ItemsFound": "items_found",
            "ItemsDeduplicated": "items_deduplicated",
            "ItemsRewritten": "items_rewritten",
            "ExtractionFallbacks": "fallback_used",
            "MessagesSent": "messages_sent",
            "MessagesFailed": "messages_failed",
            "PlainTextFallbacks": "plain_text_fallbacks",
            "Errors": "errors",
        }
        metric_data = [
            {"MetricName": name, "Value": metrics[key], "Unit": "Count"}
            for name, key in counters.items()
        ]
        metric_data.append(
            {
                "MetricName": "ExecutionSuccess",
                "Value": 0 if metrics["errors"] else 1,
                "Unit": "Count",
                "Dimensions": status_dimension,
            }
        )
        metric_data.append(
            {
                "MetricName": "ProcessingTime",
                "Value": metrics["processing_time_ms"],
                "Unit": "Milliseconds",
            }
        )

        cloudwatch.put_metric_data(Namespace=METRICS_NAMESPACE, MetricData=metric_data)
        metrics_logger.info(
            "Successfully sent metrics to CloudWatch",
            metrics_sent=len(metric_data),
            namespace=METRICS_NAMESPACE,
        )
    except Exception as e:
        metrics_logger.error(f"Failed to send CloudWatch metrics: {e}", error=str(e))
