"""Pydantic models for torrentd.

Provides validated data models for the daemon configuration.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_TRACKER_LIST_URL = (
    "https://raw.githubusercontent.com/ngosang/trackerslist/master/trackers_best.txt"
)


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    log_file: str | None = Field(None, description="Log file path")
    structured_logging: bool = Field(
        default=False,
        description="Write the log file as JSON lines",
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Include correlation IDs",
    )


class Config(BaseModel):
    """Live daemon configuration.

    A snapshot is immutable. Every change goes through ``model_copy`` and
    produces a new snapshot, so two snapshots can always be compared.
    Field names double as keys of the durable store.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    # Startup
    auto_start: bool = Field(default=True, description="Start torrents when added")
    engine_debug: bool = Field(default=False, description="Debug transfer engine")
    mute_engine_log: bool = Field(default=False, description="Silence engine log")

    # Network
    obfs_preferred: bool = Field(
        default=True,
        description="Prefer header obfuscation",
    )
    obfs_require_preferred: bool = Field(
        default=False,
        description="Require header obfuscation",
    )
    disable_trackers: bool = Field(default=False, description="Disable trackers")
    disable_ipv6: bool = Field(default=False, description="Disable IPv6")
    incoming_port: int = Field(
        default=50007,
        ge=0,
        le=65535,
        description="Incoming peer port",
    )
    proxy_url: str = Field(default="", description="Proxy URL")
    tracker_list_url: str = Field(
        default=DEFAULT_TRACKER_LIST_URL,
        description="URL of a public tracker list",
    )
    always_add_trackers: bool = Field(
        default=False,
        description="Append the tracker list to every torrent",
    )

    # Filesystem
    download_directory: str = Field(
        default="./downloads",
        description="Where downloaded data is stored",
    )
    watch_directory: str = Field(
        default="./torrents",
        description="Directory watched for new .torrent files",
    )

    # Transfer
    enable_upload: bool = Field(default=True, description="Enable upload")
    enable_seeding: bool = Field(default=False, description="Keep seeding when done")
    seed_ratio: float = Field(default=0.0, ge=0.0, description="Stop seeding at ratio")
    upload_rate: str = Field(
        default="",
        description="Upload throttle: low, medium, high, unlimited or a size like 2MB",
    )
    download_rate: str = Field(
        default="",
        description="Download throttle: low, medium, high, unlimited or a size like 2MB",
    )

    # Hooks and feeds
    done_cmd: str = Field(default="", description="Command run when a torrent completes")
    rss_url: str = Field(default="", description="RSS feed URL")

    @field_validator(
        "proxy_url",
        "tracker_list_url",
        "download_directory",
        "watch_directory",
        "upload_rate",
        "download_rate",
        "done_cmd",
        "rss_url",
        mode="before",
    )
    @classmethod
    def _none_as_empty(cls, v):
        """Treat a missing string value as empty."""
        return "" if v is None else v
