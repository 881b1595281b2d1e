"""Validated per-platform connector configuration."""

from __future__ import annotations

from pydantic import BaseModel, Field


class LineConnectorConfig(BaseModel):
    channel_access_token: str = Field(min_length=1)
    channel_secret: str = Field(min_length=1)
    api_base_url: str = "https://api.line.me"


class FacebookConnectorConfig(BaseModel):
    page_access_token: str = Field(min_length=1)
    app_secret: str = Field(min_length=1)
    verify_token: str = Field(min_length=1)
    page_id: str | None = None
    graph_base_url: str = "https://graph.facebook.com/v19.0"


class WebsiteConnectorConfig(BaseModel):
    webhook_secret: str = Field(min_length=1)
    # Both are needed for outbound delivery and sync; without them the widget polls.
    api_key: str | None = None
    api_base_url: str | None = None
