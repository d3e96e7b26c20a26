import re
from datetime import datetime

from quotameter.models import Metric, Snapshot
from quotameter.rollup import to_series

_SLUG_INVALID = re.compile(r"[^a-z0-9_-]+")


def slug(name: "str") -> "str":
    """
    metric-key-safe form of a display name:
    "Claude Sonnet 4.6!!" -> "claude_sonnet_4_6".
    """
    cleaned = _SLUG_INVALID.sub("_", name.strip().lower()).strip("_")
    return cleaned or "unknown"


def clamp(value: "float", low: "float", high: "float") -> "float":
    return min(max(value, low), high)


class MetricEmitter:
    """
    MetricEmitter writes metrics, resets, series and attributes into
    a Snapshot. Zero and negative usage values are treated as "not
    observed yet" and never registered.
    """

    def __init__(self, snapshot: "Snapshot") -> "None":
        self.snapshot = snapshot

    def emit(self, key: "str", value: "float", unit: "str", window: "str") -> "bool":
        if not key or value <= 0:
            return False
        self.snapshot.metrics[key] = Metric(used=value, unit=unit, window=window)
        return True

    def emit_limit(
        self,
        key: "str",
        limit: "float",
        used: "float",
        unit: "str",
        window: "str",
    ) -> "Metric":
        metric = Metric(used=used, limit=limit, unit=unit, window=window)
        self.snapshot.metrics[key] = metric
        return metric

    def emit_remaining(
        self,
        key: "str",
        remaining: "float",
        unit: "str",
        window: "str",
    ) -> "Metric":
        metric = Metric(remaining=max(remaining, 0.0), unit=unit, window=window)
        self.snapshot.metrics[key] = metric
        return metric

    def emit_percent(self, key: "str", percent: "float", window: "str") -> "Metric":
        metric = Metric(
            used=clamp(percent, 0.0, 100.0),
            limit=100.0,
            unit="%",
            window=window,
        )
        self.snapshot.metrics[key] = metric
        return metric

    def set_reset(self, key: "str", when: "datetime | None") -> "None":
        if when is not None:
            self.snapshot.resets[key] = when

    def set_attribute(self, key: "str", value: "str") -> "None":
        if value.strip():
            self.snapshot.attributes[key] = value

    def set_series(self, name: "str", values: "dict[str, float]") -> "None":
        series = to_series(values)
        if series:
            self.snapshot.daily_series[name] = series
