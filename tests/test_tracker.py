import json
from datetime import datetime, timezone

from quotameter.facts import ModelChanged, SessionStarted, UtilizationSampled
from quotameter.tracker import (
    UNKNOWN_SESSION,
    ContextStateTracker,
    SessionContext,
)


def _utilization(ts: "str", used: "int", total: "int" = 128000) -> "str":
    return (
        f"{ts} [INFO] CompactionProcessor: Utilization 1.0% "
        f"({used}/{total} tokens) below threshold 80%"
    )


def _event(kind: "str", ts: "str", **data: "object") -> "str":
    return json.dumps({"type": kind, "timestamp": ts, "data": data})


class TestSessionContext:
    def test_session_start_resets_model_to_default(self) -> "None":
        ctx = SessionContext(default_model="base")
        ctx.apply(ModelChanged(timestamp=None, model="other"))
        assert ctx.active_model == "other"

        ctx.apply(SessionStarted(timestamp=None, session_id="s1"))
        assert ctx.session_id == "s1"
        assert ctx.in_session
        assert ctx.active_model == "base"

    def test_model_change_keeps_session(self) -> "None":
        ctx = SessionContext()
        ctx.apply(SessionStarted(timestamp=None, session_id="s1"))
        ctx.apply(ModelChanged(timestamp=None, model="gpt-5-mini"))
        assert ctx.session_id == "s1"
        assert ctx.active_model == "gpt-5-mini"

    def test_tracks_latest_timestamp(self) -> "None":
        ctx = SessionContext()
        late = datetime(2026, 1, 2, tzinfo=timezone.utc)
        early = datetime(2026, 1, 1, tzinfo=timezone.utc)
        ctx.apply(UtilizationSampled(timestamp=late, used=1, total=2))
        ctx.apply(UtilizationSampled(timestamp=early, used=1, total=2))
        ctx.apply(UtilizationSampled(timestamp=None, used=1, total=2))
        assert ctx.last_timestamp == late


class TestBurn:
    def test_positive_deltas_only(self) -> "None":
        tracker = ContextStateTracker()
        tracker.scan_log(
            [
                "2026-01-01T00:00:00Z [INFO] Workspace initialized: s1",
                _utilization("2026-01-01T00:01:00Z", 100),
                _utilization("2026-01-01T00:02:00Z", 150),
                # compaction
                _utilization("2026-01-01T00:03:00Z", 20),
            ]
        )
        state = tracker.session("s1")
        assert state.burn == 50
        assert state.tokens == 150
        assert state.latest_utilization is not None
        assert state.latest_utilization.used == 20

    def test_growth_after_compaction_counts_again(self) -> "None":
        tracker = ContextStateTracker()
        tracker.scan_log(
            [
                "Session started: s1",
                _utilization("2026-01-01T00:01:00Z", 100),
                _utilization("2026-01-01T00:02:00Z", 150),
                _utilization("2026-01-01T00:03:00Z", 20),
                _utilization("2026-01-01T00:04:00Z", 70),
            ]
        )
        assert tracker.session("s1").burn == 100

    def test_samples_before_any_session_go_to_unknown(self) -> "None":
        tracker = ContextStateTracker()
        tracker.scan_log([_utilization("2026-01-01T00:01:00Z", 10)])
        assert tracker.session(UNKNOWN_SESSION).first_utilization is not None
        assert tracker.most_recent_session() is None

    def test_each_log_stream_starts_without_session(self) -> "None":
        tracker = ContextStateTracker()
        tracker.scan_log(["Session started: s1", _utilization("2026-01-01T00:01:00Z", 10)])
        tracker.scan_log([_utilization("2026-01-01T00:02:00Z", 30)])
        assert tracker.session("s1").burn == 0
        assert UNKNOWN_SESSION in tracker.sessions


class TestContextWindow:
    def test_newest_sample_by_timestamp_wins(self) -> "None":
        tracker = ContextStateTracker()
        # newer file scanned first
        tracker.scan_log(
            ["Session started: s2", _utilization("2026-02-21T15:00:00Z", 5000)]
        )
        tracker.scan_log(
            ["Session started: s1", _utilization("2026-02-20T10:00:00Z", 2200)]
        )
        assert tracker.latest_utilization is not None
        assert tracker.latest_utilization.used == 5000


class TestScanEvents:
    def test_counts_messages_and_tools(self) -> "None":
        tracker = ContextStateTracker(default_model="fallback")
        tracker.scan_events(
            "s1",
            [
                _event("session.model_change", "2026-02-21T14:00:00Z", newModel="gpt-5-mini"),
                _event("user.message", "2026-02-21T14:00:01Z", content="hello"),
                _event(
                    "assistant.message",
                    "2026-02-21T14:00:02Z",
                    content="ok",
                    toolRequests=[{"name": "read_file"}, {"name": "read_file"}, {}],
                ),
                "{broken",
                _event("user.message", "2026-02-22T09:00:00Z", content="again"),
            ],
            metadata={"repository": "owner/repo"},
        )
        state = tracker.session("s1")
        assert state.model == "gpt-5-mini"
        assert state.client == "owner/repo"
        assert state.messages == 2
        assert state.responses == 1
        assert tracker.tool_calls == {"read_file": 2, "unknown": 1}
        assert tracker.messages_by_day == {"2026-02-21": 1, "2026-02-22": 1}
        assert tracker.messages_by_model == {"gpt-5-mini": 2}
        assert tracker.skipped == 1

    def test_messages_before_model_change_use_default(self) -> "None":
        tracker = ContextStateTracker(default_model="fallback")
        tracker.scan_events(
            "s1", [_event("user.message", "2026-02-21T14:00:01Z", content="hi")]
        )
        assert tracker.messages_by_model == {"fallback": 1}

    def test_accepts_decoded_records(self) -> "None":
        tracker = ContextStateTracker()
        tracker.scan_events("s1", [{"type": "user.message", "data": {}}, "not-a-dict"])
        assert tracker.session("s1").messages == 1
        assert tracker.skipped == 1


class TestClient:
    def test_repository_then_cwd_then_cli(self) -> "None":
        tracker = ContextStateTracker()
        tracker.scan_events("a", [], metadata={"repository": "owner/repo", "cwd": "/x/y"})
        tracker.scan_events("b", [], metadata={"cwd": "/home/me/project/"})
        tracker.scan_events("c", [])
        assert tracker.session("a").client == "owner/repo"
        assert tracker.session("b").client == "project"
        assert tracker.session("c").client == "cli"


class TestRecency:
    def test_event_timestamps_beat_metadata(self) -> "None":
        tracker = ContextStateTracker()
        # metadata claims "old" is newer, but its events are older
        tracker.scan_events(
            "old",
            [_event("user.message", "2026-02-20T10:00:00Z")],
            metadata={"updated_at": "2026-03-01T00:00:00Z"},
        )
        tracker.scan_events(
            "new",
            [_event("user.message", "2026-02-21T10:00:00Z")],
            metadata={"updated_at": "2026-02-01T00:00:00Z"},
        )
        latest = tracker.most_recent_session()
        assert latest is not None
        assert latest.id == "new"

    def test_metadata_used_without_events(self) -> "None":
        tracker = ContextStateTracker()
        tracker.scan_events("a", [], metadata={"updated_at": "2026-02-20T10:00:00Z"})
        tracker.scan_events("b", [], metadata={"updated_at": "2026-02-21T10:00:00Z"})
        latest = tracker.most_recent_session()
        assert latest is not None
        assert latest.id == "b"

    def test_log_lines_count_toward_recency(self) -> "None":
        tracker = ContextStateTracker()
        tracker.scan_events(
            "s1",
            [_event("user.message", "2026-02-21T14:00:00Z")],
            metadata={"updated_at": "2026-02-21T14:00:00Z"},
        )
        tracker.scan_events(
            "s2",
            [_event("user.message", "2026-02-21T14:30:00Z")],
        )
        tracker.scan_log(
            ["Session started: s1", _utilization("2026-02-21T15:00:01Z", 2200)]
        )
        latest = tracker.most_recent_session()
        assert latest is not None
        assert latest.id == "s1"
        assert latest.recency == datetime(2026, 2, 21, 15, 0, 1, tzinfo=timezone.utc)


class TestUsageSamples:
    def test_usage_events_win(self) -> "None":
        tracker = ContextStateTracker()
        tracker.scan_events(
            "s1",
            [
                _event(
                    "assistant.usage",
                    "2026-02-21T14:00:00Z",
                    model="gpt-5-mini",
                    inputTokens=1000,
                    outputTokens=200,
                ),
                _event(
                    "session.shutdown",
                    "2026-02-21T15:00:00Z",
                    modelMetrics={
                        "gpt-5-mini": {"usage": {"inputTokens": 999, "outputTokens": 1}}
                    },
                ),
            ],
        )
        (sample,) = tracker.session("s1").usage_samples()
        assert sample.input_tokens == 1000
        assert sample.total_tokens == 1200
        assert sample.requests == 1
        assert sample.date == "2026-02-21"
        assert sample.dimensions == {"client": "cli", "session": "s1", "model": "gpt-5-mini"}

    def test_shutdown_metrics_next(self) -> "None":
        tracker = ContextStateTracker()
        tracker.scan_events(
            "s1",
            [
                _event(
                    "session.shutdown",
                    "2026-02-21T15:00:00Z",
                    modelMetrics={
                        "gpt-5-mini": {
                            "requests": {"count": 2},
                            "usage": {"inputTokens": 900, "outputTokens": 100},
                        }
                    },
                ),
            ],
        )
        (sample,) = tracker.session("s1").usage_samples()
        assert sample.dimension("model") == "gpt-5-mini"
        assert sample.requests == 2
        assert sample.total_tokens == 1000

    def test_log_tokens_last(self) -> "None":
        tracker = ContextStateTracker()
        tracker.scan_log(
            [
                "2026-02-21T14:00:00Z [INFO] Workspace initialized: s1",
                "2026-02-21T14:00:01Z [INFO] Model changed to: gpt-5-mini (high)",
                _utilization("2026-02-21T14:01:00Z", 1000),
                _utilization("2026-02-21T14:02:00Z", 1500),
            ]
        )
        (sample,) = tracker.session("s1").usage_samples(default_model="fallback")
        assert sample.dimension("model") == "gpt-5-mini"
        assert sample.input_tokens == 1500
        assert sample.date == "2026-02-21"

    def test_nothing_observed(self) -> "None":
        tracker = ContextStateTracker()
        tracker.scan_events("s1", [])
        assert tracker.session("s1").usage_samples() == []
