"""Meta Graph API client for Facebook Messenger pages."""

from __future__ import annotations

from datetime import UTC, datetime

from app.services.crm.inbox.clients.base import PlatformHttpClient
from app.services.crm.inbox.normalizers import _coerce_timestamp

_PROFILE_FIELDS = "first_name,last_name,name,profile_pic,locale"
_MESSAGE_FIELDS = "id,message,from,to,created_time,attachments{mime_type,image_data,file_url}"


class MetaGraphClient(PlatformHttpClient):
    """Page-token client for graph.facebook.com."""

    def __init__(
        self,
        page_access_token: str,
        page_id: str | None = None,
        base_url: str = "https://graph.facebook.com/v19.0",
        **kwargs,
    ):
        super().__init__(base_url=base_url, **kwargs)
        self.page_access_token = page_access_token
        self.page_id = page_id

    def _auth_params(self) -> dict[str, str]:
        return {"access_token": self.page_access_token}

    @property
    def _page_path(self) -> str:
        return f"/{self.page_id}" if self.page_id else "/me"

    def send_message(self, recipient_id: str, message: dict, messaging_type: str = "RESPONSE") -> dict:
        result = self._request(
            "POST",
            "/me/messages",
            json_data={
                "recipient": {"id": recipient_id},
                "messaging_type": messaging_type,
                "message": message,
            },
        )
        return result if isinstance(result, dict) else {}

    def get_profile(self, psid: str) -> dict:
        result = self._request("GET", f"/{psid}", params={"fields": _PROFILE_FIELDS})
        return result if isinstance(result, dict) else {}

    def _list_conversations(self, fields: str, cursor: str | None, limit: int) -> dict:
        params: dict[str, str | int] = {"fields": fields, "limit": limit, "platform": "messenger"}
        if cursor:
            params["after"] = cursor
        result = self._request("GET", f"{self._page_path}/conversations", params=params)
        return result if isinstance(result, dict) else {}

    @staticmethod
    def _next_cursor(result: dict) -> str | None:
        paging = result.get("paging") or {}
        if not paging.get("next"):
            return None
        return (paging.get("cursors") or {}).get("after")

    @staticmethod
    def _updated_since(conversation: dict, since: datetime | None) -> bool:
        if since is None:
            return True
        updated = _coerce_timestamp(conversation.get("updated_time"))
        if updated is None:
            return True
        reference = since if since.tzinfo else since.replace(tzinfo=UTC)
        return updated >= reference

    def list_customers(
        self,
        since: datetime | None = None,
        cursor: str | None = None,
        limit: int = 100,
    ) -> tuple[list[dict], str | None]:
        """Participants of page conversations updated since ``since`` (the page itself excluded)."""
        result = self._list_conversations("participants,updated_time", cursor, limit)
        items: list[dict] = []
        for conversation in result.get("data") or []:
            if not self._updated_since(conversation, since):
                continue
            participants = (conversation.get("participants") or {}).get("data") or []
            for participant in participants:
                if self.page_id and str(participant.get("id")) == str(self.page_id):
                    continue
                items.append(participant)
        return items, self._next_cursor(result)

    def list_messages(
        self,
        since: datetime | None = None,
        cursor: str | None = None,
        limit: int = 100,
    ) -> tuple[list[dict], str | None]:
        """Messages of page conversations updated since ``since``, flattened with their conversation id."""
        result = self._list_conversations(
            f"updated_time,messages.limit({limit}){{{_MESSAGE_FIELDS}}}",
            cursor,
            limit,
        )
        items: list[dict] = []
        for conversation in result.get("data") or []:
            if not self._updated_since(conversation, since):
                continue
            for message in (conversation.get("messages") or {}).get("data") or []:
                items.append({**message, "conversation_id": conversation.get("id")})
        return items, self._next_cursor(result)
