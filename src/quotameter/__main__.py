import asyncio
import json
import signal
import sys

import structlog
from prometheus_client import start_http_server

from quotameter.cli import parse_args
from quotameter.collector import Collector
from quotameter.config import Config
from quotameter.logging import setup_logging
from quotameter.metrics import MetricsUpdater
from quotameter.sources.base import UsageSource
from quotameter.sources.http_json import HttpJsonSource
from quotameter.sources.session_dir import SessionDirSource

logger = structlog.get_logger()


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':9186' or '0.0.0.0:9186'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


def build_sources(config: "Config") -> "list[UsageSource]":
    sources: "list[UsageSource]" = []

    if config.sessions_enabled:
        sources.append(
            SessionDirSource(config.session_dir, account=config.account or "cli")
        )
        logger.info("source_enabled", source="sessions", root=config.session_dir)

    if config.api_enabled:
        sources.append(
            HttpJsonSource(
                config.api_base_url,
                token=config.api_token,
                account=config.account or "api",
            )
        )
        logger.info("source_enabled", source="api", base_url=config.api_base_url)

    return sources


def main() -> "None":
    config = parse_args()
    setup_logging(config.log_level)

    sources = build_sources(config)
    if not sources:
        raise SystemExit(
            "No sources configured. Set QUOTAMETER_SESSION_DIR or "
            "QUOTAMETER_API_BASE_URL environment variable."
        )

    metrics_updater = MetricsUpdater()
    collector = Collector(
        sources,
        metrics_updater,
        config.scrape_interval,
        default_model=config.default_model,
        window=config.window,
    )

    if config.once:

        async def _once() -> "None":
            try:
                snapshots = await collector.collect_once()
            finally:
                await collector.close()
            json.dump([s.to_dict() for s in snapshots], sys.stdout, indent=2)
            sys.stdout.write("\n")

        asyncio.run(_once())
        return

    host, port = _parse_listen_address(config.listen_address)
    start_http_server(port, addr=host)
    logger.info("metrics_server_started", host=host, port=port)

    async def _run() -> "None":
        loop = asyncio.get_running_loop()
        # for SIGINT and SIGTERM, signal the collector
        # to stop gracefully
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, collector.stop)

        try:
            await collector.run()
        finally:
            logger.info("shutting_down")
            await collector.close()
            logger.info("shutdown_complete")

    asyncio.run(_run())


if __name__ == "__main__":
    main()
