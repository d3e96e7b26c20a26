"""
field resolution over loosely-typed, decoded JSON records.

Records are whatever json.loads produced: dicts, lists and scalars
of unknown shape. Every lookup is optional; a miss is reported as
None or "" and never raises.
"""

import math
from datetime import date, datetime, timezone
from typing import Any

# string values that mean "no value" in provider payloads
ABSENT_TOKENS: "frozenset[str]" = frozenset({"null", "nil", "n/a", "na", "unknown"})

# minor-unit keys must come before the major-unit ones so that a row
# carrying both resolves to the more precise value
COST_PATHS: "tuple[tuple[str, ...], ...]" = (
    ("cost_cents",),
    ("costCents",),
    ("total_cost_cents",),
    ("totalCostCents",),
    ("usage", "cost_cents"),
    ("cost_micros",),
    ("costMicros",),
    ("total_cost_micros",),
    ("totalCostMicros",),
    ("cost_usd",),
    ("costUSD",),
    ("total_cost_usd",),
    ("totalCostUSD",),
    ("total_cost",),
    ("totalCost",),
    ("api_cost",),
    ("apiCost",),
    ("cost",),
    ("amount", "value"),
    ("amount",),
    ("total_amount",),
    ("totalAmount",),
    ("usage", "cost_usd"),
    ("usage", "costUSD"),
    ("usage", "cost"),
)


def lookup(record: "Any", key: "str") -> "Any":
    """
    returns record[key], falling back to a case-insensitive match.
    None when record is not a mapping or the key is missing.
    """
    if not isinstance(record, dict):
        return None
    if key in record:
        return record[key]

    folded = key.casefold()
    for candidate, value in record.items():
        if isinstance(candidate, str) and candidate.casefold() == folded:
            return value
    return None


def value_at_path(record: "Any", path: "tuple[str, ...]") -> "Any":
    """
    descends through nested mappings one key at a time.
    """
    if not path:
        return None

    current = record
    for segment in path:
        current = lookup(current, segment)
        if current is None:
            return None
    return current


def to_text(value: "Any") -> "str":
    """
    renders a scalar as trimmed text. Containers have no text form.
    """
    if value is None or isinstance(value, (dict, list)):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value).strip()


def parse_number(value: "Any") -> "float | None":
    """
    accepts ints, floats and numeric strings. Booleans, blanks and
    non-numeric strings are rejected.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None

    if not math.isfinite(number):
        return None
    return number


def is_absent(text: "str") -> "bool":
    return not text or text.casefold() in ABSENT_TOKENS


def first_value(record: "Any", *paths: "tuple[str, ...]") -> "Any":
    for path in paths:
        value = value_at_path(record, path)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def first_string(record: "Any", *paths: "tuple[str, ...]") -> "str":
    for path in paths:
        text = to_text(value_at_path(record, path))
        if not is_absent(text):
            return text
    return ""


def first_number_with_path(
    record: "Any", *paths: "tuple[str, ...]"
) -> "tuple[float, tuple[str, ...]] | None":
    for path in paths:
        number = parse_number(value_at_path(record, path))
        if number is not None:
            return number, path
    return None


def first_number(record: "Any", *paths: "tuple[str, ...]") -> "float | None":
    found = first_number_with_path(record, *paths)
    if found is None:
        return None
    return found[0]


def minor_unit_factor(key: "str") -> "float":
    """
    divisor that converts a cost stored under key into major units.
    """
    lowered = key.lower()
    if "cents" in lowered:
        return 100.0
    if "micros" in lowered:
        return 1_000_000.0
    return 1.0


def cost_usd(record: "Any") -> "float":
    found = first_number_with_path(record, *COST_PATHS)
    if found is None:
        return 0.0
    value, path = found
    return value / minor_unit_factor(path[-1])


def normalize_dimension(raw: "str") -> "str":
    """
    trims whitespace and quotes from a dimension value and maps the
    placeholder tokens to "".
    """
    value = raw.strip().strip("\"'").strip()
    if is_absent(value):
        return ""
    return value


def _from_epoch(number: "float") -> "datetime | None":
    if number <= 0:
        return None
    # values this large are milliseconds
    if number > 1e12:
        number /= 1000
    try:
        return datetime.fromtimestamp(int(number), tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_time(value: "Any") -> "datetime | None":
    """
    parses unix seconds/milliseconds or ISO 8601 text into an aware
    UTC datetime. Naive text is taken as UTC.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        number = parse_number(value)
        if number is not None:
            return _from_epoch(number)

        text = to_text(value)
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def day_of(ts: "datetime") -> "str":
    return ts.astimezone(timezone.utc).date().isoformat()


def normalize_date(value: "Any") -> "str":
    """
    reduces a timestamp-ish value to YYYY-MM-DD, or "" when it
    cannot be read as a date.
    """
    ts = parse_time(value)
    if ts is not None:
        return day_of(ts)

    text = to_text(value)
    if len(text) >= 10:
        try:
            return date.fromisoformat(text[:10]).isoformat()
        except ValueError:
            return ""
    return ""
