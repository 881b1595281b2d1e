"""HTTP client for the LINE Messaging API."""

from __future__ import annotations

from datetime import datetime

from app.services.crm.inbox.clients.base import PlatformHttpClient


class LineClient(PlatformHttpClient):
    """Bearer-token client for api.line.me."""

    FOLLOWER_PAGE_MAX = 1000

    def __init__(self, channel_access_token: str, base_url: str = "https://api.line.me", **kwargs):
        super().__init__(base_url=base_url, **kwargs)
        self.channel_access_token = channel_access_token

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.channel_access_token}"}

    def push_message(self, to: str, messages: list[dict]) -> dict:
        result = self._request("POST", "/v2/bot/message/push", json_data={"to": to, "messages": messages})
        return result if isinstance(result, dict) else {}

    def reply_message(self, reply_token: str, messages: list[dict]) -> dict:
        result = self._request(
            "POST",
            "/v2/bot/message/reply",
            json_data={"replyToken": reply_token, "messages": messages},
        )
        return result if isinstance(result, dict) else {}

    def get_profile(self, user_id: str) -> dict:
        result = self._request("GET", f"/v2/bot/profile/{user_id}")
        return result if isinstance(result, dict) else {}

    def list_customers(
        self,
        since: datetime | None = None,
        cursor: str | None = None,
        limit: int = 100,
    ) -> tuple[list[dict], str | None]:
        """Page through follower ids.

        The follower endpoint has no incremental filter, so ``since`` is ignored
        and every sync is a full dump of ids.
        """
        params: dict[str, str | int] = {"limit": min(limit, self.FOLLOWER_PAGE_MAX)}
        if cursor:
            params["start"] = cursor
        result = self._request("GET", "/v2/bot/followers/ids", params=params) or {}
        user_ids = result.get("userIds") or []
        return [{"userId": user_id} for user_id in user_ids], result.get("next")

    def list_messages(
        self,
        since: datetime | None = None,
        cursor: str | None = None,
        limit: int = 100,
    ) -> tuple[list[dict], str | None]:
        # The Messaging API keeps no retrievable message history.
        return [], None
