from dataclasses import dataclass
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ZONES = [
    "CR",
    "DFCCR",
    "EC",
    "ECO",
    "ER",
    "KR",
    "NC",
    "NE",
    "NR",
    "NW",
    "SC",
    "SE",
    "SEC",
    "SR",
    "SW",
    "WC",
    "WR",
]
DEFAULT_QUERY_TYPES = ["MATURED_INDENTS", "ODR_RK_OTSG", "DEMAND_REGISTERED"]


@dataclass(frozen=True)
class FetchPolicy:
    """Retry, timeout and batching knobs for one data service."""

    batch_size: int = 3
    batch_delay: float = 0.5
    retry_attempts: int = 3
    retry_delay: float = 2.0
    request_timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if self.batch_delay < 0 or self.retry_delay < 0:
            raise ValueError("delays cannot be negative")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")


class Settings(BaseSettings):
    """Runtime configuration for the railway demand service."""

    model_config = SettingsConfigDict(
        env_prefix="RAILWAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    zones: List[str] = DEFAULT_ZONES
    query_types: List[str] = DEFAULT_QUERY_TYPES
    source_backend: str = "fois"  # options: fois, simulated
    upstream_url: str = "https://www.fois.indianrail.gov.in/RailSAHAY/SHY_OdrRasJSON"
    upstream_option: str = "ODROtsgDtls"
    request_timeout: float = 30.0
    retry_attempts: int = 3
    retry_delay: float = 2.0
    batch_size: int = 3
    batch_delay: float = 0.5
    refresh_bypasses_cache: bool = True
    simulated_rows_per_partition: int = 25
    top_n: int = 10
    route_top_n: int = 12
    log_level: str = "INFO"

    def fetch_policy(self) -> FetchPolicy:
        return FetchPolicy(
            batch_size=self.batch_size,
            batch_delay=self.batch_delay,
            retry_attempts=self.retry_attempts,
            retry_delay=self.retry_delay,
            request_timeout=self.request_timeout,
        )


settings = Settings()
