"""
Client configuration.

XRayConfig is built once and handed to XRayClient. Values come from keyword
arguments first, then XRAY_* environment variables, then the defaults below:

    config = XRayConfig(api_url="http://localhost:4000", degrade_on_error=True)
    config = XRayConfig()  # reads XRAY_API_URL, XRAY_API_KEY, ...
"""

from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from xray.tracing.records import CaptureLevel


class XRayConfig(BaseSettings):
    """Settings consumed by XRayClient. Not re-validated per call."""

    model_config = SettingsConfigDict(
        env_prefix="XRAY_",
        extra="ignore",
        frozen=True,
    )

    # Ingestion service. No api_url means no network activity at all.
    api_url: Optional[str] = None
    api_key: Optional[str] = None

    default_capture_level: CaptureLevel = CaptureLevel.NONE
    enable_async_ingestion: bool = True

    # batch_size bounds how many buffered records are in flight during a
    # drain. flush_interval_ms is advisory: records flush at run boundaries.
    batch_size: int = Field(default=100, ge=1)
    flush_interval_ms: int = Field(default=5000, ge=0)

    degrade_on_error: bool = True
    request_timeout_s: float = Field(default=10.0, gt=0)
    # When set, a run summary is logged at INFO as each run ends.
    summary_format: Optional[Literal["compact", "verbose"]] = None

    @field_validator("api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().rstrip("/")
        return value or None

    @field_validator("api_key")
    @classmethod
    def _blank_key_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value
