"""
Prometheus metrics for settlement monitoring.

Tracks:
- Notification outcomes and settlement duration
- Which resolver strategy matched
- Which line-item source was used
- Stock units decremented and voucher redemptions
- Rollbacks by reason
- Post-commit notifier failures
"""
from prometheus_client import Counter, Histogram

# Settlement metrics
settlement_notifications_total = Counter(
    "settlement_notifications_total",
    "Total gateway notifications handled",
    ["outcome"],  # settled, cancelled, pending, already_settled, ignored, failed, ...
)

settlement_duration_seconds = Histogram(
    "settlement_duration_seconds",
    "Notification handling duration in seconds",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

settlement_rollbacks_total = Counter(
    "settlement_rollbacks_total",
    "Total settlement units of work rolled back",
    ["reason"],  # insufficient_stock, voucher_limit, store_unavailable, error
)

# Resolution metrics
order_resolution_total = Counter(
    "order_resolution_total",
    "Order resolutions by matching strategy",
    ["strategy"],
)

line_item_resolution_total = Counter(
    "line_item_resolution_total",
    "Line-item resolutions by source",
    ["source"],  # linked, checkout_record, working_selection, quantity_inference, none
)

# Side-effect metrics
stock_units_decremented_total = Counter(
    "stock_units_decremented_total",
    "Total stock units decremented by settlements",
)

voucher_redemptions_total = Counter(
    "voucher_redemptions_total",
    "Total voucher redemptions counted by settlements",
)

post_commit_notifier_failures_total = Counter(
    "post_commit_notifier_failures_total",
    "Total post-commit notifier invocations that raised",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_notification(outcome: str, duration_seconds: float) -> None:
        """Record a handled notification."""
        settlement_notifications_total.labels(outcome=outcome).inc()
        settlement_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_rollback(reason: str) -> None:
        """Record a rolled-back unit of work."""
        settlement_rollbacks_total.labels(reason=reason).inc()

    @staticmethod
    def record_order_resolution(strategy: str) -> None:
        """Record which strategy resolved an order."""
        order_resolution_total.labels(strategy=strategy).inc()

    @staticmethod
    def record_line_item_resolution(source: str) -> None:
        """Record which source produced the line items."""
        line_item_resolution_total.labels(source=source).inc()

    @staticmethod
    def record_stock_decrement(units: int) -> None:
        """Record decremented stock units."""
        stock_units_decremented_total.inc(units)

    @staticmethod
    def record_voucher_redemption() -> None:
        """Record a voucher redemption."""
        voucher_redemptions_total.inc()

    @staticmethod
    def record_notifier_failure() -> None:
        """Record a post-commit notifier failure."""
        post_commit_notifier_failures_total.inc()


# Export singleton instance
metrics = MetricsCollector()
