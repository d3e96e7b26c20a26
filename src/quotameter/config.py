import os
from dataclasses import dataclass


@dataclass
class Config:
    # listen_address: format ":9186" or
    # "0.0.0.0:9186"
    listen_address: "str" = ":9186"
    # collection interval in seconds
    scrape_interval: "int" = 60
    log_level: "str" = "info"
    # label of the aggregate window for API usage
    window: "str" = "7d"
    # print one JSON snapshot per source and exit
    once: "bool" = False

    session_dir: "str" = ""
    api_base_url: "str" = ""
    api_token: "str" = ""
    account: "str" = ""
    # model assumed for sessions that never name one
    default_model: "str" = ""

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            session_dir=os.environ.get("QUOTAMETER_SESSION_DIR", ""),
            api_base_url=os.environ.get("QUOTAMETER_API_BASE_URL", ""),
            api_token=os.environ.get("QUOTAMETER_API_TOKEN", ""),
            account=os.environ.get("QUOTAMETER_ACCOUNT", ""),
            default_model=os.environ.get("QUOTAMETER_DEFAULT_MODEL", ""),
        )

    @property
    def sessions_enabled(self) -> "bool":
        return bool(self.session_dir)

    @property
    def api_enabled(self) -> "bool":
        return bool(self.api_base_url)
