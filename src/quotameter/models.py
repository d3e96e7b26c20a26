from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

# fixed set of attribution axes a sample can carry
DIMENSIONS: "tuple[str, ...]" = (
    "model",
    "tool",
    "client",
    "source",
    "provider",
    "interface",
    "endpoint",
    "language",
    "session",
)

ROLLUP_FIELDS: "tuple[str, ...]" = (
    "requests",
    "input",
    "output",
    "reasoning",
    "total",
    "cost_usd",
)


class Status(str, Enum):
    """
    Status is the pass-level health of one account's snapshot.
    """

    OK = "OK"
    NEAR_LIMIT = "NEAR_LIMIT"
    LIMITED = "LIMITED"
    AUTH_REQUIRED = "AUTH_REQUIRED"
    ERROR = "ERROR"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True, slots=True)
class UsageSample:
    """
    UsageSample is the canonical unit extracted from one API
    row or one session. Dimension values are already normalized,
    a missing dimension is simply absent from the mapping.
    """

    dimensions: "dict[str, str]" = field(default_factory=dict)
    # calendar day as YYYY-MM-DD, empty when unknown
    date: "str" = ""
    requests: "float" = 0.0
    input_tokens: "float" = 0.0
    output_tokens: "float" = 0.0
    reasoning_tokens: "float" = 0.0
    total_tokens: "float" = 0.0
    cost_usd: "float" = 0.0

    def dimension(self, name: "str") -> "str":
        return self.dimensions.get(name, "")

    @property
    def name(self) -> "str":
        return self.dimension("model") or self.dimension("tool")

    def is_valid(self) -> "bool":
        """
        a sample is kept when it carries any usage or at least a name.
        """
        return (
            self.requests != 0
            or self.input_tokens != 0
            or self.output_tokens != 0
            or self.reasoning_tokens != 0
            or self.total_tokens != 0
            or self.cost_usd != 0
            or bool(self.name)
        )


@dataclass(slots=True)
class Rollup:
    """
    Rollup is a mutable sum accumulator for one dimension key
    or one day. Owned by a single RollupAccumulator.
    """

    requests: "float" = 0.0
    input: "float" = 0.0
    output: "float" = 0.0
    reasoning: "float" = 0.0
    total: "float" = 0.0
    cost_usd: "float" = 0.0

    def add(self, sample: "UsageSample") -> "None":
        self.requests += sample.requests
        self.input += sample.input_tokens
        self.output += sample.output_tokens
        self.reasoning += sample.reasoning_tokens
        self.total += sample.total_tokens
        self.cost_usd += sample.cost_usd

    def value(self, metric: "str") -> "float":
        if metric not in ROLLUP_FIELDS:
            raise ValueError(f"unknown rollup metric: {metric}")
        return getattr(self, metric)


@dataclass(frozen=True, slots=True)
class Metric:
    """
    Metric is a single externally visible quota/usage value.
    Whenever both limit and used are known, remaining is derived
    from them and never negative.
    """

    used: "float | None" = None
    limit: "float | None" = None
    remaining: "float | None" = None
    # "requests", "tokens", "USD", "calls", "%"
    unit: "str" = ""
    # "today", "7d", "5h", "1mo", ...
    window: "str" = ""

    def __post_init__(self) -> "None":
        if self.limit is not None and self.used is not None:
            object.__setattr__(self, "remaining", max(self.limit - self.used, 0.0))

    def percent_used(self) -> "float | None":
        """
        share of the limit already used, clamped to [0, 100].
        Returns None when there is no positive limit.
        """
        if self.limit is None or self.limit <= 0:
            return None
        if self.used is not None:
            used = self.used
        elif self.remaining is not None:
            used = self.limit - self.remaining
        else:
            return None
        return min(max(used / self.limit * 100, 0.0), 100.0)

    def to_dict(self) -> "dict[str, object]":
        out: "dict[str, object]" = {"unit": self.unit, "window": self.window}
        for name in ("used", "limit", "remaining"):
            value = getattr(self, name)
            if value is not None:
                out[name] = value
        return out


@dataclass(frozen=True, slots=True)
class TimePoint:
    date: "str"
    value: "float"


@dataclass
class Snapshot:
    """
    Snapshot is the output of one normalization pass for one
    account. It is handed to the exporter as-is.
    """

    account: "str"
    status: "Status" = Status.UNKNOWN
    message: "str" = ""
    metrics: "dict[str, Metric]" = field(default_factory=dict)
    resets: "dict[str, datetime]" = field(default_factory=dict)
    daily_series: "dict[str, list[TimePoint]]" = field(default_factory=dict)
    attributes: "dict[str, str]" = field(default_factory=dict)

    def to_dict(self) -> "dict[str, object]":
        return {
            "account": self.account,
            "status": self.status.value,
            "message": self.message,
            "metrics": {k: m.to_dict() for k, m in sorted(self.metrics.items())},
            "resets": {k: ts.isoformat() for k, ts in sorted(self.resets.items())},
            "daily_series": {
                k: [{"date": p.date, "value": p.value} for p in points]
                for k, points in sorted(self.daily_series.items())
            },
            "attributes": dict(sorted(self.attributes.items())),
        }


@dataclass(frozen=True, slots=True)
class SessionRecord:
    """
    SessionRecord is one session directory as read from disk: its
    workspace metadata and its raw event lines, in file order.
    """

    id: "str"
    metadata: "dict[str, Any]" = field(default_factory=dict)
    event_lines: "list[str]" = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class SessionBundle:
    # one list of lines per log file, files in scan order
    log_files: "list[list[str]]" = field(default_factory=list)
    sessions: "list[SessionRecord]" = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ApiBundle:
    """
    ApiBundle holds the decoded JSON payloads fetched in one pass,
    keyed by payload kind ("model", "tool", "quota", "balance").
    """

    payloads: "dict[str, Any]" = field(default_factory=dict)
