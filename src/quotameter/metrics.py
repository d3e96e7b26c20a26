from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from quotameter.models import Snapshot, Status

_METRIC_LABELS = ["source", "account", "metric", "unit", "window"]


class MetricsUpdater:
    """
    applies Snapshot data to Prometheus gauges.

    Every snapshot replaces the previous one of its source and account:
    label sets the new snapshot no longer carries are removed, so a
    metric that stops being reported disappears from the exposition.
    Sources sharing an account export side by side under their own
    `source` label.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._registry: "CollectorRegistry" = registry
        self._used: "Gauge" = Gauge(
            "quotameter_metric_used",
            "Used amount of a usage or quota metric",
            _METRIC_LABELS,
            registry=registry,
        )
        self._limit: "Gauge" = Gauge(
            "quotameter_metric_limit",
            "Limit of a quota metric",
            _METRIC_LABELS,
            registry=registry,
        )
        self._remaining: "Gauge" = Gauge(
            "quotameter_metric_remaining",
            "Remaining amount of a quota metric",
            _METRIC_LABELS,
            registry=registry,
        )
        self._reset: "Gauge" = Gauge(
            "quotameter_metric_reset_timestamp_seconds",
            "Unix timestamp at which a quota metric resets",
            ["source", "account", "metric"],
            registry=registry,
        )
        self._status: "Gauge" = Gauge(
            "quotameter_account_status",
            "Account status, 1 for the current status and 0 otherwise",
            ["source", "account", "status"],
            registry=registry,
        )
        self._scrape_duration: "Histogram" = Histogram(
            "quotameter_scrape_duration_seconds",
            "Duration of source scrape cycles",
            ["source"],
            registry=registry,
        )
        self._scrape_errors: "Counter" = Counter(
            "quotameter_scrape_errors_total",
            "Total number of scrape errors by source and error type",
            ["source", "error"],
            registry=registry,
        )
        self._last_scrape_success: "Gauge" = Gauge(
            "quotameter_last_scrape_success_timestamp_seconds",
            "Unix timestamp of last successful scrape per source",
            ["source"],
            registry=registry,
        )
        # (source, account) -> gauge name -> label tuples set by the last snapshot
        self._exported: "dict[tuple[str, str], dict[str, set[tuple[str, ...]]]]" = {}

    def _gauges(self) -> "dict[str, Gauge]":
        return {
            "used": self._used,
            "limit": self._limit,
            "remaining": self._remaining,
            "reset": self._reset,
        }

    def update_snapshot(self, source: "str", snapshot: "Snapshot") -> "None":
        """
        exports every metric and reset of the snapshot and the
        account status, then drops the label sets left over from the
        previous snapshot of the same source and account.
        """
        account = snapshot.account
        current: "dict[str, set[tuple[str, ...]]]" = {
            name: set() for name in self._gauges()
        }

        for key, metric in snapshot.metrics.items():
            labels = (source, account, key, metric.unit, metric.window)
            for name, value in (
                ("used", metric.used),
                ("limit", metric.limit),
                ("remaining", metric.remaining),
            ):
                if value is None:
                    continue
                self._gauges()[name].labels(*labels).set(value)
                current[name].add(labels)

        for key, when in snapshot.resets.items():
            labels = (source, account, key)
            self._reset.labels(*labels).set(when.timestamp())
            current["reset"].add(labels)

        previous = self._exported.get((source, account), {})
        for name, gauge in self._gauges().items():
            for labels in previous.get(name, set()) - current[name]:
                gauge.remove(*labels)
        self._exported[(source, account)] = current

        for status in Status:
            self._status.labels(
                source=source, account=account, status=status.value
            ).set(1 if status == snapshot.status else 0)

    def observe_scrape_duration(
        self, source: "str", duration_seconds: "float"
    ) -> "None":
        self._scrape_duration.labels(source=source).observe(duration_seconds)

    def inc_scrape_error(self, source: "str", error: "str") -> "None":
        self._scrape_errors.labels(source=source, error=error).inc()

    def set_last_scrape_success(self, source: "str", timestamp: "float") -> "None":
        self._last_scrape_success.labels(source=source).set(timestamp)
