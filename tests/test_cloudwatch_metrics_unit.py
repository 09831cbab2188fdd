"""Unit tests for CloudWatch metrics functionality."""

from unittest.mock import Mock, patch

from botocore.exceptions import ClientError

from feed_relay.lambda_handler import cycle_metrics, send_cloudwatch_metrics
from feed_relay.models import (
    CycleResult,
    CycleState,
    DeliveryReport,
    DeliveryStatus,
    RewriteStrategy,
)


def successful_cycle():
    return CycleResult(
        status="success",
        state=CycleState.DONE,
        item_id="g1",
        strategy=RewriteStrategy.EXTRACTION,
        delivery=[
            DeliveryReport(index=0, status=DeliveryStatus.SUCCESS),
            DeliveryReport(index=1, status=DeliveryStatus.SUCCESS, plain_text=True),
            DeliveryReport(index=2, status=DeliveryStatus.FAILED, plain_text=True),
        ],
        processing_time_ms=1234,
    )


class TestCloudWatchMetricsUnit:
    """Unit tests for CloudWatch metrics functionality."""

    def test_cycle_metrics(self):
        metrics = cycle_metrics(successful_cycle())

        assert metrics == {
            "items_found": 1,
            "items_deduplicated": 0,
            "items_rewritten": 1,
            "fallback_used": 1,
            "messages_sent": 2,
            "messages_failed": 1,
            "plain_text_fallbacks": 2,
            "errors": 0,
            "processing_time_ms": 1234,
        }

    def test_duplicate_cycle_metrics(self):
        result = CycleResult(status="success", state=CycleState.DUPLICATE, item_id="g1")

        metrics = cycle_metrics(result)

        assert metrics["items_deduplicated"] == 1
        assert metrics["items_rewritten"] == 0
        assert metrics["messages_sent"] == 0

    def test_send_cloudwatch_metrics_success(self):
        with patch("boto3.client") as mock_boto_client:
            mock_cloudwatch = Mock()
            mock_boto_client.return_value = mock_cloudwatch

            send_cloudwatch_metrics(successful_cycle(), "us-east-1", "test-exec-123")

            mock_boto_client.assert_called_with("cloudwatch", region_name="us-east-1")
            kwargs = mock_cloudwatch.put_metric_data.call_args.kwargs
            assert kwargs["Namespace"] == "RSS-Arabic-Relay"

            metrics = {m["MetricName"]: m for m in kwargs["MetricData"]}
            assert metrics["MessagesSent"]["Value"] == 2
            assert metrics["ExtractionFallbacks"]["Value"] == 1
            assert metrics["ProcessingTime"]["Unit"] == "Milliseconds"
            assert metrics["ExecutionSuccess"]["Dimensions"] == [
                {"Name": "Status", "Value": "Success"}
            ]

    def test_send_cloudwatch_metrics_failure_is_swallowed(self):
        with patch("boto3.client") as mock_boto_client:
            mock_cloudwatch = Mock()
            mock_cloudwatch.put_metric_data.side_effect = ClientError(
                {"Error": {"Code": "AccessDenied", "Message": "Access denied"}},
                "PutMetricData",
            )
            mock_boto_client.return_value = mock_cloudwatch

            send_cloudwatch_metrics(successful_cycle(), "us-east-1", "test-exec-123")

            assert mock_cloudwatch.put_metric_data.called
