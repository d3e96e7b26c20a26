import asyncio
import time
from datetime import datetime, timezone

import structlog

from quotameter.errors import QuotameterError
from quotameter.metrics import MetricsUpdater
from quotameter.models import ApiBundle, SessionBundle, Snapshot, Status
from quotameter.pipeline import normalize_api_payloads, normalize_sessions
from quotameter.sources.base import UsageSource

logger = structlog.get_logger()


def utc_today() -> "str":
    return datetime.now(timezone.utc).date().isoformat()


class Collector:
    """
    Collector is responsible for orchestrating the periodic
    collection of usage telemetry. Each cycle fetches every source
    concurrently, runs one normalization pass per fetched bundle and
    hands the resulting snapshots to the metrics updater. The main
    loop runs indefinitely, sleeping for a configured interval
    between cycles.
    """

    def __init__(
        self,
        sources: "list[UsageSource]",
        metrics_updater: "MetricsUpdater",
        scrape_interval_seconds: "int" = 60,
        default_model: "str" = "",
        window: "str" = "7d",
    ) -> "None":
        self._sources = sources
        self._metrics = metrics_updater
        self._interval = scrape_interval_seconds
        self._default_model = default_model
        self._window = window
        self._stop_event: "asyncio.Event" = asyncio.Event()

    def stop(self) -> "None":
        """
        signals the collector loop to stop after the current cycle.
        """
        self._stop_event.set()

    async def close(self) -> "None":
        """
        closes all source sessions.
        """
        for s in self._sources:
            await s.close()

    async def run(self) -> "None":
        """
        runs the main collection loop. Runs until stop() is called.
        """
        while not self._stop_event.is_set():
            await self.collect_once()

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except TimeoutError:
                pass

    async def collect_once(self) -> "list[Snapshot]":
        """
        runs a single collection cycle and returns one snapshot per
        source, in source order.
        """
        today = utc_today()
        logger.info("collection_cycle_start", today=today, sources=len(self._sources))

        tasks = [self._collect_source(source, today) for source in self._sources]
        snapshots = await asyncio.gather(*tasks)

        logger.info("collection_cycle_end")
        return list(snapshots)

    def normalize(self, account: "str", bundle: "ApiBundle | SessionBundle", today: "str") -> "Snapshot":
        if isinstance(bundle, SessionBundle):
            return normalize_sessions(account, bundle, today, self._default_model)
        return normalize_api_payloads(account, bundle, today, self._window)

    async def _collect_source(self, source: "UsageSource", today: "str") -> "Snapshot":
        cycle_start = time.monotonic()
        had_error = False

        try:
            bundle = await source.fetch()
            snapshot = self.normalize(source.account, bundle, today)
        except QuotameterError as exc:
            logger.warning(
                "source_fetch_error",
                source=source.name,
                account=source.account,
                error=str(exc),
            )
            self._metrics.inc_scrape_error(source.name, type(exc).__name__)
            snapshot = Snapshot(account=source.account, status=exc.status, message=str(exc))
            had_error = True
        except Exception as exc:
            logger.exception("source_collect_error", source=source.name)
            self._metrics.inc_scrape_error(source.name, type(exc).__name__)
            snapshot = Snapshot(account=source.account, status=Status.ERROR, message=str(exc))
            had_error = True

        self._metrics.update_snapshot(source.name, snapshot)

        duration = time.monotonic() - cycle_start
        self._metrics.observe_scrape_duration(source.name, duration)

        if not had_error:
            self._metrics.set_last_scrape_success(source.name, time.time())
        logger.debug(
            "source_collected",
            source=source.name,
            status=snapshot.status.value,
            metrics=len(snapshot.metrics),
        )
        return snapshot
