"""Client for the website chat widget backend."""

from __future__ import annotations

from datetime import datetime

from app.services.crm.inbox.clients.base import PlatformHttpClient


class WebsiteClient(PlatformHttpClient):
    """API-key client for the widget backend (``X-API-Key``)."""

    def __init__(self, api_key: str, base_url: str, **kwargs):
        super().__init__(base_url=base_url, **kwargs)
        self.api_key = api_key

    def _auth_headers(self) -> dict[str, str]:
        return {"X-API-Key": self.api_key}

    def send_message(self, visitor_id: str, message: dict) -> dict:
        result = self._request("POST", f"/api/v1/visitors/{visitor_id}/messages", json_data=message)
        return result if isinstance(result, dict) else {}

    def _list(
        self,
        path: str,
        since: datetime | None,
        cursor: str | None,
        limit: int,
    ) -> tuple[list[dict], str | None]:
        params: dict[str, str | int] = {"limit": limit}
        if since:
            params["updated_since"] = since.isoformat()
        if cursor:
            params["cursor"] = cursor
        result = self._request("GET", path, params=params) or {}
        return list(result.get("data") or []), result.get("next_cursor")

    def list_customers(
        self,
        since: datetime | None = None,
        cursor: str | None = None,
        limit: int = 100,
    ) -> tuple[list[dict], str | None]:
        return self._list("/api/v1/visitors", since, cursor, limit)

    def list_messages(
        self,
        since: datetime | None = None,
        cursor: str | None = None,
        limit: int = 100,
    ) -> tuple[list[dict], str | None]:
        return self._list("/api/v1/messages", since, cursor, limit)
