from datetime import datetime, timezone

import pytest
from prometheus_client import CollectorRegistry

from quotameter.models import Metric, Snapshot, Status


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def snapshot() -> "Snapshot":
    """
    small snapshot with a usage metric, a quota metric and a reset.
    """
    return Snapshot(
        account="team",
        status=Status.NEAR_LIMIT,
        metrics={
            "7d_tokens": Metric(used=570, unit="tokens", window="7d"),
            "time_limit": Metric(used=85, limit=100, unit="calls", window="1mo"),
        },
        resets={"time_limit": datetime(2026, 3, 1, tzinfo=timezone.utc)},
    )
