from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePath
from typing import Any

import structlog

from quotameter.facts import (
    AssistantMessage,
    Fact,
    ModelChanged,
    QuotaReading,
    SessionShutdown,
    SessionStarted,
    UsageReported,
    UserMessage,
    UtilizationSampled,
    parse_event,
    parse_event_line,
    parse_log_line,
)
from quotameter.models import UsageSample
from quotameter.resolver import day_of, parse_time

logger = structlog.get_logger()

# bucket for facts that arrive before any session marker
UNKNOWN_SESSION = "unknown"


def _later(a: "datetime | None", b: "datetime | None") -> "bool":
    """
    true when a is strictly newer than b. A known time beats None.
    """
    if a is None:
        return False
    return b is None or a > b


@dataclass
class SessionContext:
    """
    SessionContext is the implicit state carried while scanning one
    stream: which session we are in and which model is active.

    With no session_id the stream is in the NoSession state; a
    SessionStarted fact moves it to InSession and resets the model
    to the stream default.
    """

    default_model: "str" = ""
    session_id: "str" = ""
    active_model: "str" = ""
    last_timestamp: "datetime | None" = None

    def __post_init__(self) -> "None":
        if not self.active_model:
            self.active_model = self.default_model

    @property
    def in_session(self) -> "bool":
        return bool(self.session_id)

    def apply(self, fact: "Fact") -> "None":
        if _later(fact.timestamp, self.last_timestamp):
            self.last_timestamp = fact.timestamp

        if isinstance(fact, SessionStarted):
            self.session_id = fact.session_id
            self.active_model = fact.model or self.default_model
        elif isinstance(fact, ModelChanged):
            self.active_model = fact.model


@dataclass
class SessionState:
    """
    everything observed for one session during a pass.
    """

    id: "str"
    model: "str" = ""
    metadata: "dict[str, Any]" = field(default_factory=dict)
    first_utilization: "UtilizationSampled | None" = None
    # previous sample in scan order, for burn deltas
    last_utilization: "UtilizationSampled | None" = None
    # newest sample by timestamp, for display
    latest_utilization: "UtilizationSampled | None" = None
    burn: "float" = 0.0
    messages: "int" = 0
    responses: "int" = 0
    tool_calls: "dict[str, int]" = field(default_factory=dict)
    usage_events: "list[UsageReported]" = field(default_factory=list)
    shutdowns: "list[SessionShutdown]" = field(default_factory=list)
    latest_event: "datetime | None" = None

    @property
    def client(self) -> "str":
        repository = str(self.metadata.get("repository") or "").strip()
        if repository:
            return repository
        cwd = str(self.metadata.get("cwd") or "").strip()
        if cwd:
            name = PurePath(cwd.rstrip("/\\")).name
            if name:
                return name
        return "cli"

    @property
    def tokens(self) -> "float":
        """
        context tokens consumed: the first observed utilization plus
        all positive growth after it.
        """
        if self.first_utilization is None:
            return 0.0
        return self.first_utilization.used + self.burn

    @property
    def metadata_updated(self) -> "datetime | None":
        return parse_time(self.metadata.get("updated_at"))

    @property
    def recency(self) -> "datetime | None":
        """
        latest event time seen in the scan; the metadata timestamp is
        used only when no event carried a time.
        """
        if self.latest_event is not None:
            return self.latest_event
        return self.metadata_updated

    @property
    def day(self) -> "str":
        when = self.recency
        return day_of(when) if when is not None else ""

    def usage_samples(self, default_model: "str" = "") -> "list[UsageSample]":
        """
        usage attributed to this session. Per-response usage events win,
        then shutdown summaries, then the log-derived context tokens.
        """
        base = {"client": self.client, "session": self.id}
        fallback_model = self.model or default_model or "unknown"
        samples = []

        if self.usage_events:
            for event in self.usage_events:
                samples.append(
                    UsageSample(
                        dimensions={**base, "model": event.model or fallback_model},
                        date=day_of(event.timestamp) if event.timestamp else self.day,
                        requests=1.0,
                        input_tokens=event.input_tokens,
                        output_tokens=event.output_tokens,
                        total_tokens=event.input_tokens + event.output_tokens,
                        cost_usd=event.cost,
                    )
                )
            return samples

        for shutdown in self.shutdowns:
            date = day_of(shutdown.timestamp) if shutdown.timestamp else self.day
            for metrics in shutdown.model_metrics:
                samples.append(
                    UsageSample(
                        dimensions={**base, "model": metrics.model},
                        date=date,
                        requests=metrics.requests,
                        input_tokens=metrics.input_tokens,
                        output_tokens=metrics.output_tokens,
                        total_tokens=metrics.input_tokens + metrics.output_tokens,
                        cost_usd=metrics.cost,
                    )
                )
        if samples:
            return samples

        sample = UsageSample(
            dimensions={**base, "model": fallback_model},
            date=self.day,
            requests=float(self.messages),
            input_tokens=self.tokens,
            total_tokens=self.tokens,
        )
        return [sample] if sample.input_tokens or sample.requests else []


class ContextStateTracker:
    """
    ContextStateTracker folds ordered log lines and session events
    into per-session state. The running SessionContext supplies the
    session and model that individual lines do not repeat.

    Event records that do not parse are counted in `skipped`, log
    lines that carry no fact are ignored; a scan never raises on bad
    input.
    """

    def __init__(self, default_model: "str" = "") -> "None":
        self.default_model = default_model
        self.context: "SessionContext" = SessionContext(default_model=default_model)
        self.sessions: "dict[str, SessionState]" = {}
        self.messages_by_day: "dict[str, int]" = {}
        self.messages_by_model: "dict[str, int]" = {}
        self.tool_calls: "dict[str, int]" = {}
        self.response_chars: "int" = 0
        self.reasoning_chars: "int" = 0
        self.latest_utilization: "UtilizationSampled | None" = None
        self.quotas: "dict[str, tuple[datetime | None, QuotaReading]]" = {}
        self.skipped: "int" = 0

    def session(self, session_id: "str") -> "SessionState":
        state = self.sessions.get(session_id)
        if state is None:
            state = SessionState(id=session_id)
            self.sessions[session_id] = state
        return state

    def begin_stream(self, session_id: "str" = "") -> "None":
        """
        starts a new stream. Event streams already know their session,
        log streams start in NoSession.
        """
        self.context = SessionContext(default_model=self.default_model)
        if session_id:
            self.context.apply(SessionStarted(timestamp=None, session_id=session_id))
            self.session(session_id)

    def observe(self, fact: "Fact") -> "None":
        self.context.apply(fact)
        if isinstance(fact, SessionStarted):
            state = self.session(fact.session_id)
            if fact.model:
                state.model = fact.model
        else:
            state = self.session(self.context.session_id or UNKNOWN_SESSION)

        if _later(fact.timestamp, state.latest_event):
            state.latest_event = fact.timestamp

        if isinstance(fact, ModelChanged):
            state.model = fact.model
        elif isinstance(fact, UtilizationSampled):
            self._observe_utilization(state, fact)
        elif isinstance(fact, UserMessage):
            self._observe_user_message(state, fact)
        elif isinstance(fact, AssistantMessage):
            self._observe_assistant_message(state, fact)
        elif isinstance(fact, UsageReported):
            state.usage_events.append(fact)
            for reading in fact.quotas:
                current = self.quotas.get(reading.name)
                if current is None or not _later(current[0], fact.timestamp):
                    self.quotas[reading.name] = (fact.timestamp, reading)
        elif isinstance(fact, SessionShutdown):
            state.shutdowns.append(fact)

    def _observe_utilization(self, state: "SessionState", fact: "UtilizationSampled") -> "None":
        previous = state.last_utilization
        if previous is not None:
            delta = fact.used - previous.used
            # compaction shrinks the context; it never reduces burn
            if delta > 0:
                state.burn += delta
        state.last_utilization = fact
        if state.first_utilization is None:
            state.first_utilization = fact

        if state.latest_utilization is None or not _later(
            state.latest_utilization.timestamp, fact.timestamp
        ):
            state.latest_utilization = fact
        if self.latest_utilization is None or not _later(
            self.latest_utilization.timestamp, fact.timestamp
        ):
            self.latest_utilization = fact

    def _observe_user_message(self, state: "SessionState", fact: "UserMessage") -> "None":
        state.messages += 1
        model = self.context.active_model or "unknown"
        self.messages_by_model[model] = self.messages_by_model.get(model, 0) + 1
        if fact.timestamp is not None:
            day = day_of(fact.timestamp)
            self.messages_by_day[day] = self.messages_by_day.get(day, 0) + 1

    def _observe_assistant_message(
        self, state: "SessionState", fact: "AssistantMessage"
    ) -> "None":
        state.responses += 1
        self.response_chars += fact.response_chars
        self.reasoning_chars += fact.reasoning_chars
        for name in fact.tool_names:
            name = name or "unknown"
            self.tool_calls[name] = self.tool_calls.get(name, 0) + 1
            state.tool_calls[name] = state.tool_calls.get(name, 0) + 1

    def scan_log(self, lines: "Iterable[str]") -> "int":
        """
        scans one free-text log stream. Returns the number of facts.
        """
        self.begin_stream()
        facts = 0
        for line in lines:
            if not line.strip():
                continue
            fact = parse_log_line(line)
            if fact is None:
                # most log lines carry nothing we track
                continue
            self.observe(fact)
            facts += 1
        return facts

    def scan_events(
        self,
        session_id: "str",
        events: "Iterable[str | dict[str, Any]]",
        metadata: "dict[str, Any] | None" = None,
    ) -> "int":
        """
        scans one session's ordered event records, given either as raw
        JSON lines or as decoded mappings.
        """
        self.begin_stream(session_id)
        if metadata:
            self.session(session_id).metadata.update(metadata)

        facts = 0
        for event in events:
            if isinstance(event, str):
                if not event.strip():
                    continue
                fact = parse_event_line(event)
            else:
                fact = parse_event(event)
            if fact is None:
                self.skipped += 1
                logger.debug("event_line_skipped", session=session_id)
                continue
            self.observe(fact)
            facts += 1
        return facts

    def most_recent_session(self) -> "SessionState | None":
        candidates = [
            state
            for state in self.sessions.values()
            if state.id != UNKNOWN_SESSION and state.recency is not None
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda state: (state.recency, state.id))
