"""
typed facts scraped from session log lines and session event records.

This is the only place that knows what the raw lines look like; the
tracker and everything downstream consume the fact types below. A
line or event that cannot be read yields None.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Union

from quotameter.resolver import first_number, first_string, first_value, parse_time

_TIMESTAMP = re.compile(
    r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:?\d{2})?"
)
_SESSION_MARKER = re.compile(r"(?:Workspace|Session) (?:initialized|started):\s*([^\s(]+)")
_UTILIZATION = re.compile(r"\((\d+)\s*/\s*(\d+) tokens\)")
_MODEL_LABEL = re.compile(r"model(?:\s+(?:changed|switched|set)\s+to)?$", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class SessionStarted:
    timestamp: "datetime | None"
    session_id: "str"
    model: "str" = ""


@dataclass(frozen=True, slots=True)
class ModelChanged:
    timestamp: "datetime | None"
    model: "str"


@dataclass(frozen=True, slots=True)
class UtilizationSampled:
    timestamp: "datetime | None"
    used: "int"
    total: "int"


@dataclass(frozen=True, slots=True)
class UserMessage:
    timestamp: "datetime | None"
    chars: "int" = 0


@dataclass(frozen=True, slots=True)
class AssistantMessage:
    timestamp: "datetime | None"
    response_chars: "int" = 0
    reasoning_chars: "int" = 0
    tool_names: "tuple[str, ...]" = ()


@dataclass(frozen=True, slots=True)
class QuotaReading:
    """
    QuotaReading is one entry of the quota snapshots attached to a
    usage event, e.g. premium interactions.
    """

    name: "str"
    entitlement: "float | None"
    used: "float | None"
    remaining_percent: "float | None"
    reset: "datetime | None"


@dataclass(frozen=True, slots=True)
class UsageReported:
    timestamp: "datetime | None"
    model: "str"
    input_tokens: "float" = 0.0
    output_tokens: "float" = 0.0
    cache_read_tokens: "float" = 0.0
    cache_write_tokens: "float" = 0.0
    cost: "float" = 0.0
    duration_ms: "float" = 0.0
    quotas: "tuple[QuotaReading, ...]" = ()


@dataclass(frozen=True, slots=True)
class ModelMetrics:
    model: "str"
    requests: "float" = 0.0
    cost: "float" = 0.0
    input_tokens: "float" = 0.0
    output_tokens: "float" = 0.0
    cache_read_tokens: "float" = 0.0
    cache_write_tokens: "float" = 0.0


@dataclass(frozen=True, slots=True)
class SessionShutdown:
    timestamp: "datetime | None"
    shutdown_type: "str" = ""
    premium_requests: "float" = 0.0
    api_duration_ms: "float" = 0.0
    lines_added: "float" = 0.0
    lines_removed: "float" = 0.0
    files_modified: "float" = 0.0
    model_metrics: "tuple[ModelMetrics, ...]" = ()


@dataclass(frozen=True, slots=True)
class Activity:
    """
    any other well-formed event; only its timestamp matters.
    """

    timestamp: "datetime | None"
    kind: "str" = ""


Fact = Union[
    SessionStarted,
    ModelChanged,
    UtilizationSampled,
    UserMessage,
    AssistantMessage,
    UsageReported,
    SessionShutdown,
    Activity,
]


def line_timestamp(line: "str") -> "datetime | None":
    match = _TIMESTAMP.search(line)
    if match is None:
        return None
    return parse_time(match.group(0))


def model_from_message(message: "str") -> "str":
    """
    "Model changed to: gpt-5-mini (high)" -> "gpt-5-mini".
    Returns "" unless the label before ": " names a model.
    """
    label, sep, rest = message.partition(": ")
    if not sep or _MODEL_LABEL.search(label.strip()) is None:
        return ""

    rest = rest.strip()
    if rest.endswith(")") and "(" in rest:
        rest = rest[: rest.rfind("(")].strip()
    parts = rest.split()
    if not parts:
        return ""
    return parts[0]


def parse_log_line(line: "str") -> "Fact | None":
    line = line.strip()
    if not line:
        return None
    ts = line_timestamp(line)

    match = _SESSION_MARKER.search(line)
    if match is not None:
        return SessionStarted(timestamp=ts, session_id=match.group(1))

    match = _UTILIZATION.search(line)
    if match is not None:
        return UtilizationSampled(
            timestamp=ts,
            used=int(match.group(1)),
            total=int(match.group(2)),
        )

    # drop the timestamp/level prefix so the label is what precedes ": "
    message = re.sub(r"^.*?\]\s*", "", line) if "]" in line else line
    model = model_from_message(message)
    if model:
        return ModelChanged(timestamp=ts, model=model)
    return None


def _tool_names(requests: "Any") -> "tuple[str, ...]":
    if not isinstance(requests, list):
        return ()
    names = []
    for request in requests:
        name = first_string(request, ("name",), ("toolName",), ("function", "name"))
        names.append(name or "unknown")
    return tuple(names)


def _text_length(data: "Any", key: "str") -> "int":
    value = data.get(key) if isinstance(data, dict) else None
    return len(value) if isinstance(value, str) else 0


def _quota_readings(data: "dict[str, Any]") -> "tuple[QuotaReading, ...]":
    snapshots = data.get("quotaSnapshots")
    if not isinstance(snapshots, dict):
        return ()
    readings = []
    for name, entry in snapshots.items():
        if not isinstance(entry, dict):
            continue
        readings.append(
            QuotaReading(
                name=str(name),
                entitlement=first_number(entry, ("entitlementRequests",), ("entitlement",)),
                used=first_number(entry, ("usedRequests",), ("used",)),
                remaining_percent=first_number(
                    entry, ("remainingPercentage",), ("remaining_percentage",)
                ),
                reset=parse_time(first_value(entry, ("resetDate",), ("reset_date",))),
            )
        )
    return tuple(readings)


def _model_metrics(data: "dict[str, Any]") -> "tuple[ModelMetrics, ...]":
    metrics = data.get("modelMetrics")
    if not isinstance(metrics, dict):
        return ()
    out = []
    for model, entry in sorted(metrics.items()):
        if not isinstance(entry, dict) or not str(model).strip():
            continue
        out.append(
            ModelMetrics(
                model=str(model).strip(),
                requests=first_number(entry, ("requests", "count")) or 0.0,
                cost=first_number(entry, ("requests", "cost")) or 0.0,
                input_tokens=first_number(entry, ("usage", "inputTokens")) or 0.0,
                output_tokens=first_number(entry, ("usage", "outputTokens")) or 0.0,
                cache_read_tokens=first_number(entry, ("usage", "cacheReadTokens")) or 0.0,
                cache_write_tokens=first_number(entry, ("usage", "cacheWriteTokens")) or 0.0,
            )
        )
    return tuple(out)


def parse_event(record: "Any") -> "Fact | None":
    """
    maps one decoded session event ({"type", "timestamp", "data"})
    to a fact.
    """
    if not isinstance(record, dict):
        return None
    kind = record.get("type")
    if not isinstance(kind, str) or not kind:
        return None

    ts = parse_time(record.get("timestamp"))
    data = record.get("data")
    if not isinstance(data, dict):
        data = {}

    if kind == "session.start":
        session_id = first_string(data, ("sessionId",), ("session_id",), ("id",))
        if not session_id:
            return None
        return SessionStarted(
            timestamp=ts,
            session_id=session_id,
            model=first_string(data, ("selectedModel",), ("model",)),
        )

    if kind == "session.model_change":
        model = first_string(data, ("newModel",), ("model",))
        if not model:
            return None
        return ModelChanged(timestamp=ts, model=model)

    if kind == "session.info":
        model = model_from_message(first_string(data, ("message",)))
        if model:
            return ModelChanged(timestamp=ts, model=model)
        return Activity(timestamp=ts, kind=kind)

    if kind == "user.message":
        return UserMessage(timestamp=ts, chars=_text_length(data, "content"))

    if kind == "assistant.message":
        return AssistantMessage(
            timestamp=ts,
            response_chars=_text_length(data, "content"),
            reasoning_chars=_text_length(data, "reasoningText"),
            tool_names=_tool_names(data.get("toolRequests")),
        )

    if kind == "assistant.usage":
        return UsageReported(
            timestamp=ts,
            model=first_string(data, ("model",)),
            input_tokens=first_number(data, ("inputTokens",), ("input_tokens",)) or 0.0,
            output_tokens=first_number(data, ("outputTokens",), ("output_tokens",)) or 0.0,
            cache_read_tokens=first_number(data, ("cacheReadTokens",)) or 0.0,
            cache_write_tokens=first_number(data, ("cacheWriteTokens",)) or 0.0,
            cost=first_number(data, ("cost",)) or 0.0,
            duration_ms=first_number(data, ("duration",)) or 0.0,
            quotas=_quota_readings(data),
        )

    if kind == "session.shutdown":
        return SessionShutdown(
            timestamp=ts,
            shutdown_type=first_string(data, ("shutdownType",)),
            premium_requests=first_number(data, ("totalPremiumRequests",)) or 0.0,
            api_duration_ms=first_number(data, ("totalApiDurationMs",)) or 0.0,
            lines_added=first_number(data, ("codeChanges", "linesAdded")) or 0.0,
            lines_removed=first_number(data, ("codeChanges", "linesRemoved")) or 0.0,
            files_modified=first_number(data, ("codeChanges", "filesModified")) or 0.0,
            model_metrics=_model_metrics(data),
        )

    return Activity(timestamp=ts, kind=kind)


def parse_event_line(line: "str") -> "Fact | None":
    line = line.strip()
    if not line:
        return None
    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        return None
    return parse_event(record)
