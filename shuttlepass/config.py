"""Service configuration pulled from environment variables via pydantic."""
from typing import List, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="config")


class Settings(BaseSettings):
    """Environment-driven configuration for the shuttle boarding-pass service."""
    model_config = SettingsConfigDict(env_prefix="SHUTTLE_", extra="ignore")

    # portal endpoints
    identity_url: str = "https://iaaa.pku.edu.cn/iaaa/oauthlogin.do"
    portal_base_url: str = "https://wproc.pku.edu.cn"
    app_id: str = "wproc"
    hall_id: int = 1
    request_timeout_seconds: float = 10.0

    # direction + selection
    critical_hour: int = 14
    morning_goes_outbound: bool = True
    past_tolerance_minutes: int = 10
    future_tolerance_minutes: int = 30
    nearby_window_minutes: int = 30
    outbound_route_ids: List[int] = Field(default_factory=lambda: [2, 4])
    return_route_ids: List[int] = Field(default_factory=lambda: [5, 6, 7])
    # campus A is the outbound destination, campus B the return destination
    outbound_anchor: Tuple[float, float] = (39.9929, 116.3106)
    return_anchor: Tuple[float, float] = (40.1577, 116.2870)
    outbound_marker: str = "燕"
    return_marker: str = "新"

    # acquisition
    lookup_attempts: int = 3
    lookup_delay_seconds: float = 1.0
    max_parallel_lookups: int = 4

    # history
    history_page_size: int = 50
    history_max_pages: int = 40

    # refresh cycle
    idle_refresh_seconds: int = 600

    # storage + API
    credential_redis_url: str | None = None
    schedule_cache_ttl_seconds: int = 3600
    api_key: str | None = None

    @field_validator("identity_url", "portal_base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs to avoid double slashes."""
        return str(v).rstrip("/")

    @field_validator("critical_hour", mode="after")
    @classmethod
    def check_critical_hour(cls, v: int) -> int:
        """Reject thresholds outside 0..24."""
        if not 0 <= v <= 24:
            raise ValueError(f"critical_hour must be within 0..24, got {v}")
        return v

    @field_validator("past_tolerance_minutes", "future_tolerance_minutes", "nearby_window_minutes",
                     mode="after")
    @classmethod
    def check_non_negative(cls, v: int) -> int:
        """Tolerances cannot be negative."""
        if v < 0:
            raise ValueError("value must be >= 0")
        return v

    @field_validator("lookup_attempts", mode="after")
    @classmethod
    def check_lookup_attempts(cls, v: int) -> int:
        """At least one listing is needed to find a fresh reservation."""
        if v < 1:
            raise ValueError(f"lookup_attempts must be >= 1, got {v}")
        return v


settings = Settings()


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {settings.model_dump_json(indent=4)}")
