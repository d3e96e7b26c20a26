import argparse

from quotameter.config import Config


def parse_args(argv: "list[str] | None" = None) -> "Config":
    parser = argparse.ArgumentParser(
        prog="quotameter",
        description="AI usage and quota telemetry exporter",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=":9186",
        help="Address to listen on (default: :9186)",
    )
    parser.add_argument(
        "--scrape.interval",
        dest="scrape_interval",
        type=int,
        default=60,
        help="Scrape interval in seconds (default: 60)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--window",
        dest="window",
        default="7d",
        help="Window label for aggregated API usage (default: 7d)",
    )
    parser.add_argument(
        "--once",
        dest="once",
        action="store_true",
        help="Collect once, print the snapshots as JSON and exit",
    )

    args = parser.parse_args(argv)
    config = Config.from_env()
    config.listen_address = args.listen_address
    config.scrape_interval = args.scrape_interval
    config.log_level = args.log_level
    config.window = args.window
    config.once = args.once
    return config
