import json
from datetime import datetime, timezone

from quotameter.models import Metric, Snapshot, Status, TimePoint, UsageSample


class TestUsageSample:
    def test_named_sample_without_usage_is_valid(self) -> "None":
        assert UsageSample(dimensions={"tool": "search"}).is_valid()

    def test_empty_sample_is_invalid(self) -> "None":
        assert not UsageSample(dimensions={"client": "cli"}).is_valid()


class TestMetric:
    def test_remaining_only_without_used(self) -> "None":
        metric = Metric(limit=10, remaining=4)
        assert metric.used is None
        assert metric.remaining == 4

    def test_to_dict_omits_missing_values(self) -> "None":
        assert Metric(used=3, unit="tokens", window="7d").to_dict() == {
            "unit": "tokens",
            "window": "7d",
            "used": 3,
        }


class TestSnapshotToDict:
    def test_is_json_serializable(self) -> "None":
        snapshot = Snapshot(
            account="team",
            status=Status.LIMITED,
            message="quota exhausted",
            metrics={"b": Metric(used=1), "a": Metric(used=2, limit=2)},
            resets={"a": datetime(2026, 3, 1, tzinfo=timezone.utc)},
            daily_series={"tokens": [TimePoint("2026-01-01", 5)]},
            attributes={"model_usage": "a: 100%"},
        )
        out = json.loads(json.dumps(snapshot.to_dict()))

        assert out["status"] == "LIMITED"
        assert list(out["metrics"]) == ["a", "b"]
        assert out["metrics"]["a"]["remaining"] == 0
        assert out["resets"]["a"] == "2026-03-01T00:00:00+00:00"
        assert out["daily_series"]["tokens"] == [{"date": "2026-01-01", "value": 5}]
