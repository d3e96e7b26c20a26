"""
one normalization pass: raw payloads or session files in, Snapshot out.

Every function here builds its own accumulator, tracker and emitter,
so two passes never share state.
"""

from collections.abc import Mapping

import structlog

from quotameter.emitter import MetricEmitter, slug
from quotameter.extract import (
    KIND_MODEL,
    KIND_TOOL,
    CreditBalance,
    QuotaLimit,
    extract_balance,
    extract_limits,
    extract_usage_samples,
)
from quotameter.models import ApiBundle, Rollup, SessionBundle, Snapshot, Status
from quotameter.ranking import count_summary, share_summary, top_n
from quotameter.rollup import RollupAccumulator
from quotameter.tracker import UNKNOWN_SESSION, ContextStateTracker, SessionState

logger = structlog.get_logger()

NEAR_LIMIT_PERCENT = 80.0
LIMITED_PERCENT = 100.0

# how many per-model token series are drawn
TOP_MODEL_SERIES = 3
# how many entries the *_usage attributes list
SUMMARY_ITEMS = 6

SESSION_WINDOW = "all"


def _emit_rollup(
    emitter: "MetricEmitter",
    prefix: "str",
    rollup: "Rollup",
    fields: "Mapping[str, tuple[str, str]]",
    window: "str",
) -> "None":
    """
    emits rollup values under "<prefix>_<suffix>" for every
    suffix -> (rollup field, unit) in fields.
    """
    for suffix, (field_name, unit) in fields.items():
        emitter.emit(f"{prefix}_{suffix}", rollup.value(field_name), unit, window)


_MODEL_FIELDS = {
    "requests": ("requests", "requests"),
    "input_tokens": ("input", "tokens"),
    "output_tokens": ("output", "tokens"),
    "total_tokens": ("total", "tokens"),
    "cost_usd": ("cost_usd", "USD"),
}
_CLIENT_FIELDS = {
    "total_tokens": ("total", "tokens"),
    "input_tokens": ("input", "tokens"),
    "output_tokens": ("output", "tokens"),
    "reasoning_tokens": ("reasoning", "tokens"),
    "requests": ("requests", "requests"),
}
_PROVIDER_FIELDS = {
    "cost_usd": ("cost_usd", "USD"),
    "requests": ("requests", "requests"),
    "input_tokens": ("input", "tokens"),
    "output_tokens": ("output", "tokens"),
}
_TODAY_FIELDS = {
    "requests": ("requests", "requests"),
    "input_tokens": ("input", "tokens"),
    "output_tokens": ("output", "tokens"),
    "reasoning_tokens": ("reasoning", "tokens"),
    "tokens": ("total", "tokens"),
    "cost": ("cost_usd", "USD"),
}


def _values(rollups: "Mapping[str, Rollup]", metric: "str") -> "dict[str, float]":
    return {key: rollup.value(metric) for key, rollup in rollups.items()}


def apply_model_samples(
    emitter: "MetricEmitter",
    acc: "RollupAccumulator",
    today: "str",
    window: "str",
) -> "None":
    """
    emits per-model, per-client, per-source, per-provider, interface,
    endpoint and language metrics plus the daily series and the
    usage-share attributes for model rows.
    """
    for model, rollup in acc.rollups("model").items():
        _emit_rollup(emitter, f"model_{slug(model)}", rollup, _MODEL_FIELDS, window)

    for client, rollup in acc.rollups("client").items():
        _emit_rollup(emitter, f"client_{slug(client)}", rollup, _CLIENT_FIELDS, window)

    for source, rollup in acc.rollups("source").items():
        key = slug(source)
        emitter.emit(f"source_{key}_requests", rollup.requests, "requests", window)
        today_requests = acc.daily_values("requests", "source", source).get(today, 0.0)
        emitter.emit(f"source_{key}_requests_today", today_requests, "requests", "today")

    for provider, rollup in acc.rollups("provider").items():
        _emit_rollup(emitter, f"provider_{slug(provider)}", rollup, _PROVIDER_FIELDS, window)

    for interface, rollup in acc.rollups("interface").items():
        emitter.emit(f"interface_{slug(interface)}", rollup.requests, "requests", window)

    for endpoint, rollup in acc.rollups("endpoint").items():
        emitter.emit(f"endpoint_{slug(endpoint)}_requests", rollup.requests, "requests", window)

    for language, rollup in acc.rollups("language").items():
        emitter.emit(f"lang_{slug(language)}", rollup.requests, "requests", window)

    _emit_rollup(emitter, "today", acc.day(today), _TODAY_FIELDS, "today")
    emitter.emit("requests_today", acc.day(today).requests, "requests", "today")
    emitter.emit(f"{window}_requests", acc.total.requests, "requests", window)
    emitter.emit(f"{window}_tokens", acc.total.total, "tokens", window)
    emitter.emit(f"{window}_api_cost", acc.total.cost_usd, "USD", window)

    emitter.set_series("cost", acc.daily_values("cost_usd"))
    emitter.set_series("requests", acc.daily_values("requests"))
    emitter.set_series("tokens", acc.daily_values("total"))
    for model in top_n(acc.rollups("model"), TOP_MODEL_SERIES, "total"):
        emitter.set_series(f"tokens_{slug(model)}", acc.daily_values("total", "model", model))
    for client in acc.keys("client"):
        emitter.set_series(f"usage_client_{slug(client)}", acc.daily_values("requests", "client", client))
    for source in acc.keys("source"):
        emitter.set_series(f"usage_source_{slug(source)}", acc.daily_values("requests", "source", source))

    emitter.set_attribute(
        "model_usage", share_summary(_values(acc.rollups("model"), "total"), SUMMARY_ITEMS)
    )
    emitter.set_attribute(
        "client_usage", share_summary(_values(acc.rollups("client"), "total"), SUMMARY_ITEMS)
    )
    emitter.set_attribute(
        "source_usage",
        count_summary(_values(acc.rollups("source"), "requests"), "req", SUMMARY_ITEMS),
    )
    emitter.set_attribute(
        "provider_usage",
        share_summary(_values(acc.rollups("provider"), "requests"), SUMMARY_ITEMS),
    )
    emitter.set_attribute(
        "language_usage",
        count_summary(_values(acc.rollups("language"), "requests"), "req", SUMMARY_ITEMS),
    )


def apply_tool_samples(
    emitter: "MetricEmitter",
    acc: "RollupAccumulator",
    today: "str",
    window: "str",
) -> "None":
    tools = acc.rollups("tool")
    for tool, rollup in tools.items():
        key = slug(tool)
        emitter.emit(f"tool_{key}", rollup.requests, "calls", window)
        emitter.emit(f"toolcost_{key}_usd", rollup.cost_usd, "USD", window)

    emitter.emit("tool_calls_today", acc.day(today).requests, "calls", "today")
    emitter.emit(f"{window}_tool_calls", acc.total.requests, "calls", window)
    emitter.set_series("tool_calls", acc.daily_values("requests"))
    emitter.set_attribute(
        "tool_usage", count_summary(_values(tools, "requests"), "calls", SUMMARY_ITEMS)
    )


def apply_limits(emitter: "MetricEmitter", limits: "list[QuotaLimit]") -> "float | None":
    """
    emits one limit metric per quota row and returns the highest
    percentage used across rows, None when no row reported one.
    """
    worst: "float | None" = None
    for limit in limits:
        key = slug(limit.kind)
        percent = limit.percentage
        if limit.limit is not None and limit.current is not None:
            metric = emitter.emit_limit(key, limit.limit, limit.current, limit.unit, limit.window)
            if percent is None:
                percent = metric.percent_used()
        if percent is not None:
            percent = emitter.emit_percent(f"{key}_percent", percent, limit.window).used
            if worst is None or percent > worst:
                worst = percent
        emitter.set_reset(key, limit.reset)
    return worst


def apply_balance(emitter: "MetricEmitter", balance: "CreditBalance") -> "None":
    if balance.granted is not None and balance.used is not None:
        emitter.emit_limit("credit_balance", balance.granted, balance.used, "USD", "")
        if balance.granted > 0:
            emitter.emit_percent(
                "plan_percent_used", balance.used / balance.granted * 100, ""
            )
    else:
        emitter.emit_remaining("credit_balance", balance.available, "USD", "")


def finalize_status(
    snapshot: "Snapshot",
    worst_percent: "float | None",
    ok_message: "str" = "OK",
) -> "None":
    """
    derives the snapshot status from the worst quota percentage. A
    snapshot without any metric stays UNKNOWN.
    """
    if worst_percent is not None and worst_percent >= LIMITED_PERCENT:
        snapshot.status = Status.LIMITED
        snapshot.message = "quota exhausted"
    elif worst_percent is not None and worst_percent >= NEAR_LIMIT_PERCENT:
        snapshot.status = Status.NEAR_LIMIT
        snapshot.message = "usage nearing limit"
    elif snapshot.metrics:
        snapshot.status = Status.OK
        snapshot.message = ok_message
    else:
        snapshot.status = Status.UNKNOWN
        snapshot.message = "no usage data"


def normalize_api_payloads(
    account: "str",
    bundle: "ApiBundle",
    today: "str",
    window: "str" = "7d",
) -> "Snapshot":
    """
    normalizes the payloads of one API fetch. Payload kinds that are
    missing from the bundle are simply not reported.
    """
    snapshot = Snapshot(account=account)
    emitter = MetricEmitter(snapshot)
    payloads = bundle.payloads

    if KIND_MODEL in payloads:
        models = RollupAccumulator()
        models.add_all(extract_usage_samples(payloads[KIND_MODEL], KIND_MODEL))
        apply_model_samples(emitter, models, today, window)

    if KIND_TOOL in payloads:
        tools = RollupAccumulator()
        tools.add_all(extract_usage_samples(payloads[KIND_TOOL], KIND_TOOL))
        apply_tool_samples(emitter, tools, today, window)

    worst: "float | None" = None
    if "quota" in payloads:
        worst = apply_limits(emitter, extract_limits(payloads["quota"]))

    ok_message = "OK"
    balance = extract_balance(payloads.get("balance"))
    if balance is not None:
        apply_balance(emitter, balance)
        ok_message = f"${max(balance.available, 0.0):.2f} remaining"

    finalize_status(snapshot, worst, ok_message)
    logger.debug(
        "api_pass_normalized",
        account=account,
        metrics=len(snapshot.metrics),
        status=snapshot.status.value,
    )
    return snapshot


def _format_time(state: "SessionState") -> "str":
    when = state.recency
    if when is None:
        return ""
    return when.strftime("%Y-%m-%dT%H:%M:%SZ")


def apply_session_quotas(emitter: "MetricEmitter", tracker: "ContextStateTracker") -> "float | None":
    """
    emits the newest quota snapshot reported by usage events, per
    quota name, and returns the highest percentage used.
    """
    worst: "float | None" = None
    for name, (_, reading) in sorted(tracker.quotas.items()):
        key = slug(name)
        percent = None
        if reading.entitlement is not None and reading.used is not None:
            if reading.entitlement > 0:
                metric = emitter.emit_limit(key, reading.entitlement, reading.used, "requests", "1mo")
                percent = metric.percent_used()
            else:
                # unlimited plan
                emitter.emit(key, reading.used, "requests", "1mo")
        if percent is None and reading.remaining_percent is not None:
            percent = 100.0 - reading.remaining_percent
        if percent is not None:
            percent = emitter.emit_percent(f"{key}_percent", percent, "1mo").used
            if worst is None or percent > worst:
                worst = percent
        emitter.set_reset(key, reading.reset)
    return worst


def normalize_sessions(
    account: "str",
    bundle: "SessionBundle",
    today: "str",
    default_model: "str" = "",
) -> "Snapshot":
    """
    scans log files and session event streams and normalizes the
    per-session usage they describe.
    """
    tracker = ContextStateTracker(default_model=default_model)
    for lines in bundle.log_files:
        tracker.scan_log(lines)
    for record in bundle.sessions:
        tracker.scan_events(record.id, record.event_lines, record.metadata)

    sessions = [state for sid, state in sorted(tracker.sessions.items()) if sid != UNKNOWN_SESSION]

    acc = RollupAccumulator()
    for state in sessions:
        acc.add_all(state.usage_samples(default_model))

    snapshot = Snapshot(account=account)
    emitter = MetricEmitter(snapshot)
    window = SESSION_WINDOW

    for model, rollup in acc.rollups("model").items():
        _emit_rollup(emitter, f"model_{slug(model)}", rollup, _MODEL_FIELDS, window)

    sessions_by_client: "dict[str, int]" = {}
    for state in sessions:
        sessions_by_client[state.client] = sessions_by_client.get(state.client, 0) + 1
    for client, rollup in acc.rollups("client").items():
        _emit_rollup(emitter, f"client_{slug(client)}", rollup, _CLIENT_FIELDS, window)
    for client, count in sessions_by_client.items():
        emitter.emit(f"client_{slug(client)}_sessions", count, "sessions", window)

    emitter.emit("cli_messages", sum(state.messages for state in sessions), "messages", window)
    emitter.emit("cli_input_tokens", acc.total.input, "tokens", window)
    emitter.emit("cli_output_tokens", acc.total.output, "tokens", window)
    emitter.emit("cli_cost_usd", acc.total.cost_usd, "USD", window)
    emitter.emit("total_sessions", len(sessions), "sessions", window)
    emitter.emit(
        "session_burn_tokens", sum(state.burn for state in sessions), "tokens", window
    )
    emitter.emit("messages_today", tracker.messages_by_day.get(today, 0), "messages", "today")
    for model, count in tracker.messages_by_model.items():
        emitter.emit(f"model_{slug(model)}_messages", count, "messages", window)

    for tool, count in tracker.tool_calls.items():
        emitter.emit(f"tool_{slug(tool)}", count, "calls", window)

    shutdowns = [shutdown for state in sessions for shutdown in state.shutdowns]
    emitter.emit(
        "premium_requests", sum(s.premium_requests for s in shutdowns), "requests", window
    )
    emitter.emit("lines_added", sum(s.lines_added for s in shutdowns), "lines", window)
    emitter.emit("lines_removed", sum(s.lines_removed for s in shutdowns), "lines", window)
    emitter.emit("files_modified", sum(s.files_modified for s in shutdowns), "files", window)

    context = tracker.latest_utilization
    if context is not None:
        emitter.emit_limit("context_window", context.total, context.used, "tokens", "session")
        emitter.set_attribute("context_window_tokens", f"{context.used}/{context.total}")

    worst = apply_session_quotas(emitter, tracker)

    emitter.set_series("messages", tracker.messages_by_day)
    emitter.set_series("tokens", acc.daily_values("total"))
    emitter.set_series("cost", acc.daily_values("cost_usd"))
    for model in top_n(acc.rollups("model"), TOP_MODEL_SERIES, "total"):
        emitter.set_series(f"tokens_{slug(model)}", acc.daily_values("total", "model", model))
    for client in acc.keys("client"):
        emitter.set_series(f"tokens_client_{slug(client)}", acc.daily_values("total", "client", client))

    if sessions:
        emitter.set_attribute("total_sessions", str(len(sessions)))
    latest = tracker.most_recent_session()
    if latest is not None:
        emitter.set_attribute("last_session_model", latest.model or default_model)
        emitter.set_attribute("last_session_client", latest.client)
        emitter.set_attribute("last_session_time", _format_time(latest))
        if latest.latest_utilization is not None:
            emitter.set_attribute(
                "last_session_tokens",
                f"{latest.latest_utilization.used}/{latest.latest_utilization.total}",
            )

    emitter.set_attribute(
        "model_usage", share_summary(_values(acc.rollups("model"), "total"), SUMMARY_ITEMS)
    )
    emitter.set_attribute(
        "client_usage", share_summary(_values(acc.rollups("client"), "total"), SUMMARY_ITEMS)
    )
    emitter.set_attribute(
        "tool_usage", count_summary(tracker.tool_calls, "calls", SUMMARY_ITEMS)
    )
    emitter.set_attribute(
        "model_messages", count_summary(tracker.messages_by_model, "msgs", SUMMARY_ITEMS)
    )
    for name, count in (
        ("messages", sum(state.messages for state in sessions)),
        ("responses", sum(state.responses for state in sessions)),
        ("tool_calls", sum(tracker.tool_calls.values())),
        ("response_chars", tracker.response_chars),
        ("reasoning_chars", tracker.reasoning_chars),
    ):
        if count > 0:
            emitter.set_attribute(f"activity_{name}", str(count))

    finalize_status(snapshot, worst, f"{len(sessions)} sessions")
    logger.debug(
        "session_pass_normalized",
        account=account,
        sessions=len(sessions),
        skipped=tracker.skipped,
        metrics=len(snapshot.metrics),
    )
    return snapshot
