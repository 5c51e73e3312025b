"""Configuration model for gitterchat."""

from typing import Optional

from pydantic import BaseModel, Field

from gitterchat.chat.client import (
    DEFAULT_API_BASE_URL,
    DEFAULT_STREAM_BASE_URL,
    DEFAULT_STREAM_MAX_RETRIES,
    DEFAULT_STREAM_WAIT,
)


class Config(BaseModel):
    """Configuration model."""

    # Gitter API credentials
    token: Optional[str] = None

    # Endpoints
    api_base_url: str = DEFAULT_API_BASE_URL
    stream_base_url: str = DEFAULT_STREAM_BASE_URL

    # Stream reconnection settings
    stream_wait_sec: float = Field(DEFAULT_STREAM_WAIT, ge=0)  # Backoff unit, grows linearly
    stream_max_retries: int = Field(DEFAULT_STREAM_MAX_RETRIES, ge=1)

    # REST settings
    request_timeout_sec: float = Field(30.0, gt=0)

    debug: bool = False
