"""
turns provider JSON payloads into UsageSample, QuotaLimit and
CreditBalance values.

Payloads wrap their rows in whatever envelope the API version of
the day uses, and the rows themselves rename fields freely. Every
field below is therefore resolved through an ordered list of
candidate paths.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from quotameter.models import UsageSample
from quotameter.resolver import (
    cost_usd,
    first_number,
    first_string,
    first_value,
    lookup,
    normalize_date,
    normalize_dimension,
    parse_time,
)

KIND_MODEL = "model"
KIND_TOOL = "tool"

# envelope keys tried, in order, before falling back to the
# largest nested row set
USAGE_WRAPPER_KEYS: "tuple[str, ...]" = (
    "data",
    "items",
    "list",
    "rows",
    "records",
    "usage",
    "model_usage",
    "modelUsage",
    "tool_usage",
    "toolUsage",
    "result",
)
LIMIT_WRAPPER_KEYS: "tuple[str, ...]" = ("limits", "items", "data")

DATE_PATHS = (
    ("date",),
    ("day",),
    ("time",),
    ("timestamp",),
    ("created_at",),
    ("createdAt",),
    ("ts",),
    ("meta", "date"),
    ("meta", "timestamp"),
)
MODEL_NAME_PATHS = (
    ("model",),
    ("model_id",),
    ("modelId",),
    ("model_name",),
    ("modelName",),
    ("name",),
    ("model", "id"),
    ("model", "name"),
    ("model", "modelId"),
    ("meta", "model"),
)
TOOL_NAME_PATHS = (
    ("tool",),
    ("tool_name",),
    ("toolName",),
    ("name",),
    ("tool_id",),
    ("toolId",),
    ("tool", "name"),
    ("tool", "id"),
    ("meta", "tool"),
)
CLIENT_PATHS = (
    ("client",),
    ("client_name",),
    ("clientName",),
    ("application",),
    ("app",),
    ("sdk",),
    ("meta", "client"),
    ("client", "name"),
    ("context", "client"),
)
SOURCE_PATHS = (
    ("source",),
    ("source_name",),
    ("sourceName",),
    ("origin",),
    ("channel",),
    ("meta", "source"),
    ("meta", "origin"),
)
PROVIDER_PATHS = (
    ("provider",),
    ("provider_name",),
    ("providerName",),
    ("upstream_provider",),
    ("upstreamProvider",),
    ("model", "provider"),
    ("model", "provider_name"),
    ("route", "provider_name"),
    ("model", "vendor"),
)
INTERFACE_PATHS = (
    ("interface",),
    ("interface_name",),
    ("interfaceName",),
    ("mode",),
    ("client_type",),
    ("entrypoint",),
    ("meta", "interface"),
)
ENDPOINT_PATHS = (
    ("endpoint",),
    ("endpoint_name",),
    ("endpointName",),
    ("route",),
    ("path",),
    ("meta", "endpoint"),
)
LANGUAGE_PATHS = (
    ("language",),
    ("lang",),
    ("programming_language",),
    ("programmingLanguage",),
    ("file_language",),
    ("meta", "language"),
)
REQUEST_PATHS = (
    ("requests",),
    ("request_count",),
    ("requestCount",),
    ("request_num",),
    ("requestNum",),
    ("num_model_requests",),
    ("calls",),
    ("count",),
    ("usageCount",),
    ("usage", "requests"),
    ("stats", "requests"),
)
INPUT_PATHS = (
    ("input_tokens",),
    ("inputTokens",),
    ("input_token_count",),
    ("prompt_tokens",),
    ("promptTokens",),
    ("usage", "input_tokens"),
    ("usage", "inputTokens"),
)
OUTPUT_PATHS = (
    ("output_tokens",),
    ("outputTokens",),
    ("completion_tokens",),
    ("completionTokens",),
    ("usage", "output_tokens"),
    ("usage", "outputTokens"),
)
REASONING_PATHS = (
    ("reasoning_tokens",),
    ("reasoningTokens",),
    ("thinking_tokens",),
    ("thinkingTokens",),
    ("usage", "reasoning_tokens"),
)
TOTAL_PATHS = (
    ("total_tokens",),
    ("totalTokens",),
    ("tokens",),
    ("token_count",),
    ("tokenCount",),
    ("usage", "total_tokens"),
    ("usage", "totalTokens"),
)

# a row is recognised by any of these
_ROW_NAME_HINTS = (
    ("model",),
    ("model_id",),
    ("modelName",),
    ("tool",),
    ("tool_name",),
    ("name",),
    ("model", "name"),
    ("tool", "name"),
)
_ROW_REQUEST_HINTS = (
    ("requests",),
    ("request_count",),
    ("calls",),
    ("count",),
    ("usage", "requests"),
)
_ROW_TOKEN_HINTS = (
    ("total_tokens",),
    ("tokens",),
    ("input_tokens",),
    ("output_tokens",),
    ("usage", "total_tokens"),
)
_ROW_COST_HINTS = (
    ("cost",),
    ("total_cost",),
    ("cost_usd",),
    ("total_cost_usd",),
    ("usage", "cost_usd"),
)


def infer_language(model: "str") -> "str":
    """
    coarse workload category guessed from a model name.
    """
    name = model.strip().lower()
    if not name:
        return ""
    if any(hint in name for hint in ("coder", "code", "codestral", "devstral")):
        return "code"
    if any(
        hint in name
        for hint in ("vision", "image", "multimodal", "omni", "vl")
    ):
        return "multimodal"
    if any(
        hint in name
        for hint in ("audio", "speech", "voice", "whisper", "tts", "stt")
    ):
        return "audio"
    if "reason" in name or "thinking" in name:
        return "reasoning"
    return "general"


def looks_like_usage_row(row: "dict[str, Any]") -> "bool":
    if first_string(row, *_ROW_NAME_HINTS):
        return True
    return (
        first_number(row, *_ROW_REQUEST_HINTS) is not None
        or first_number(row, *_ROW_TOKEN_HINTS) is not None
        or first_number(row, *_ROW_COST_HINTS) is not None
    )


def _mappings(values: "list[Any]") -> "list[dict[str, Any]]":
    return [item for item in values if isinstance(item, dict)]


def extract_usage_rows(payload: "Any") -> "list[dict[str, Any]]":
    """
    finds the list of usage rows inside a payload, whether it is a
    bare array, a single row, or rows wrapped in an envelope.
    """
    if isinstance(payload, list):
        rows = _mappings(payload)
        if rows:
            return rows
        nested: "list[dict[str, Any]]" = []
        for item in payload:
            nested.extend(extract_usage_rows(item))
        return nested

    if not isinstance(payload, dict):
        return []

    # a paged envelope carries its rows in a list next to row-like totals
    for key in USAGE_WRAPPER_KEYS:
        value = lookup(payload, key)
        if isinstance(value, list):
            rows = extract_usage_rows(value)
            if rows:
                return rows

    if looks_like_usage_row(payload):
        return [payload]

    for key in USAGE_WRAPPER_KEYS:
        value = lookup(payload, key)
        if value is None or isinstance(value, list):
            continue
        rows = extract_usage_rows(value)
        if rows:
            return rows

    best: "list[dict[str, Any]]" = []
    for value in payload.values():
        rows = extract_usage_rows(value)
        if len(rows) > len(best):
            best = rows
    return best


def extract_limit_rows(payload: "Any") -> "list[dict[str, Any]]":
    if isinstance(payload, list):
        return _mappings(payload)
    if not isinstance(payload, dict):
        return []
    if "type" in payload or "limitType" in payload:
        return [payload]

    for key in LIMIT_WRAPPER_KEYS:
        if key in payload:
            rows = extract_limit_rows(payload[key])
            if rows:
                return rows

    found: "list[dict[str, Any]]" = []
    for value in payload.values():
        found.extend(extract_limit_rows(value))
    return found


def sample_from_row(row: "dict[str, Any]", kind: "str" = KIND_MODEL) -> "UsageSample":
    dims: "dict[str, str]" = {}

    if kind == KIND_MODEL:
        name = first_string(row, *MODEL_NAME_PATHS)
    else:
        name = first_string(row, *TOOL_NAME_PATHS)
    if name:
        dims[kind] = name

    for dimension, paths in (
        ("client", CLIENT_PATHS),
        ("source", SOURCE_PATHS),
        ("provider", PROVIDER_PATHS),
        ("interface", INTERFACE_PATHS),
        ("endpoint", ENDPOINT_PATHS),
        ("language", LANGUAGE_PATHS),
    ):
        value = normalize_dimension(first_string(row, *paths))
        if value:
            dims[dimension] = value

    # client and source are the same axis under different names
    if "source" not in dims and "client" in dims:
        dims["source"] = dims["client"]
    if "client" not in dims and "source" in dims:
        dims["client"] = dims["source"]

    if kind == KIND_MODEL and "language" not in dims:
        language = infer_language(name)
        if language:
            dims["language"] = language

    input_tokens = first_number(row, *INPUT_PATHS) or 0.0
    output_tokens = first_number(row, *OUTPUT_PATHS) or 0.0
    reasoning_tokens = first_number(row, *REASONING_PATHS) or 0.0
    total_tokens = first_number(row, *TOTAL_PATHS) or 0.0
    if total_tokens == 0:
        total_tokens = input_tokens + output_tokens + reasoning_tokens

    return UsageSample(
        dimensions=dims,
        date=normalize_date(first_value(row, *DATE_PATHS)),
        requests=first_number(row, *REQUEST_PATHS) or 0.0,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        reasoning_tokens=reasoning_tokens,
        total_tokens=total_tokens,
        cost_usd=cost_usd(row),
    )


def extract_usage_samples(payload: "Any", kind: "str" = KIND_MODEL) -> "list[UsageSample]":
    """
    extracts every valid sample from a payload. When at least one
    row carries a name, unnamed rows are dropped as envelope noise.
    """
    samples = [
        sample
        for sample in (sample_from_row(row, kind) for row in extract_usage_rows(payload))
        if sample.is_valid()
    ]
    if any(sample.dimension(kind) for sample in samples):
        return [sample for sample in samples if sample.dimension(kind)]
    return samples


@dataclass(frozen=True, slots=True)
class QuotaLimit:
    """
    QuotaLimit is one row of a provider's limit/quota payload.
    """

    kind: "str"
    # 0..100, None when the row did not report one
    percentage: "float | None"
    limit: "float | None"
    current: "float | None"
    unit: "str"
    window: "str"
    reset: "datetime | None"


# unit/window for limit types whose rows do not describe themselves
_LIMIT_DEFAULTS: "dict[str, tuple[str, str]]" = {
    "TOKENS_LIMIT": ("tokens", "5h"),
    "TIME_LIMIT": ("calls", "1mo"),
}


def parse_limit_row(row: "dict[str, Any]") -> "QuotaLimit | None":
    kind = first_string(row, ("type",), ("limitType",)).upper()
    if not kind:
        return None

    percentage = first_number(row, ("percentage",), ("usedPercent",), ("used_percentage",))
    # fractions are reported by some API versions
    if percentage is not None and percentage <= 1:
        percentage *= 100

    default_unit, default_window = _LIMIT_DEFAULTS.get(kind, ("requests", ""))
    return QuotaLimit(
        kind=kind,
        percentage=percentage,
        limit=first_number(row, ("usage",), ("limit",), ("quota",)),
        current=first_number(row, ("currentValue",), ("current",), ("used",)),
        unit=first_string(row, ("unit",)) or default_unit,
        window=first_string(row, ("window",), ("period",)) or default_window,
        reset=parse_time(first_value(row, ("nextResetTime",), ("resetTime",), ("reset_at",))),
    )


def extract_limits(payload: "Any") -> "list[QuotaLimit]":
    limits = []
    for row in extract_limit_rows(payload):
        limit = parse_limit_row(row)
        if limit is not None:
            limits.append(limit)
    return limits


@dataclass(frozen=True, slots=True)
class CreditBalance:
    available: "float"
    used: "float | None"
    granted: "float | None"


def extract_balance(payload: "Any") -> "CreditBalance | None":
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    row = data if isinstance(data, dict) else payload

    available = first_number(
        row,
        ("total_available",),
        ("totalAvailable",),
        ("remaining_balance",),
        ("remainingBalance",),
        ("balance",),
    )
    if available is None:
        return None
    return CreditBalance(
        available=available,
        used=first_number(row, ("total_used",), ("totalUsed",), ("usage",), ("total_usage",)),
        granted=first_number(
            row,
            ("total_granted",),
            ("totalGranted",),
            ("total_credits",),
            ("totalCredits",),
        ),
    )
