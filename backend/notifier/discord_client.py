"""
Discord REST API client (bot token) implementing MessagingClient and ChannelProvisioner
"""
import json
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from errors import AttachmentTooLargeError, DeliveryError, TransientDeliveryError
from .base import Embed, OutboundMessage, SentMessage

DISCORD_API_BASE = "https://discord.com/api/v10"
GUILD_TEXT_CHANNEL = 0
ERROR_ENTITY_TOO_LARGE = 40005


def embed_to_json(embed: Embed) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    if embed.description:
        data["description"] = embed.description
    if embed.author:
        data["author"] = {"name": embed.author}
    if embed.footer:
        data["footer"] = {"text": embed.footer}
    if embed.color is not None:
        data["color"] = embed.color
    if embed.timestamp:
        data["timestamp"] = embed.timestamp.isoformat()
    return data


def message_from_json(data: Dict[str, Any]) -> SentMessage:
    footers = []
    for embed in data.get("embeds") or []:
        text = (embed.get("footer") or {}).get("text")
        if text:
            footers.append(text)
    return SentMessage(message_id=str(data.get("id", "")), content=data.get("content") or "", footers=footers)


class DiscordRestClient:
    """Thin async wrapper over the endpoints the relay needs"""

    def __init__(
        self,
        token: str,
        guild_id: Optional[str] = None,
        category_id: Optional[str] = None,
        api_base: str = DISCORD_API_BASE,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.guild_id = guild_id
        self.category_id = category_id
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=api_base,
            timeout=timeout,
            headers={
                "Authorization": f"Bot {token}",
                "User-Agent": "ClipRelay (https://github.com/cliprelay, 1.0)",
            },
        )

    async def close(self):
        if self._owns_client:
            await self.client.aclose()

    async def fetch_recent_messages(self, channel_id: str, limit: int) -> List[SentMessage]:
        response = await self._request("GET", f"/channels/{channel_id}/messages", params={"limit": limit})
        return [message_from_json(item) for item in response.json()]

    async def send_message(self, channel_id: str, message: OutboundMessage) -> SentMessage:
        payload: Dict[str, Any] = {
            "content": message.content,
            "embeds": [embed_to_json(e) for e in message.embeds],
            "allowed_mentions": {"parse": ["roles"]},
        }

        if message.attachments:
            payload["attachments"] = [
                {"id": index, "filename": attachment.filename}
                for index, attachment in enumerate(message.attachments)
            ]
            files = [
                (f"files[{index}]", (attachment.filename, attachment.data, "application/octet-stream"))
                for index, attachment in enumerate(message.attachments)
            ]
            response = await self._request(
                "POST",
                f"/channels/{channel_id}/messages",
                data={"payload_json": json.dumps(payload)},
                files=files,
            )
        else:
            response = await self._request("POST", f"/channels/{channel_id}/messages", json=payload)

        sent = message_from_json(response.json())
        logger.debug(f"Sent message {sent.message_id} to channel {channel_id}")
        return sent

    async def create_text_channel(self, name: str) -> str:
        if not self.guild_id:
            raise DeliveryError("DISCORD_GUILD_ID is not configured; cannot provision channels")

        body: Dict[str, Any] = {"name": name, "type": GUILD_TEXT_CHANNEL}
        if self.category_id:
            body["parent_id"] = self.category_id

        response = await self._request("POST", f"/guilds/{self.guild_id}/channels", json=body)
        channel_id = str(response.json()["id"])
        logger.info(f"Created channel #{name} ({channel_id})")
        return channel_id

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise TransientDeliveryError(f"{method} {path} failed: {e}") from e

        if response.status_code < 400:
            return response

        detail = response.text[:200]
        code = None
        try:
            code = response.json().get("code")
        except (ValueError, AttributeError):
            pass

        if response.status_code == 413 or code == ERROR_ENTITY_TOO_LARGE:
            raise AttachmentTooLargeError(f"{method} {path}: request entity too large")
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientDeliveryError(f"{method} {path}: HTTP {response.status_code} {detail}")
        raise DeliveryError(f"{method} {path}: HTTP {response.status_code} {detail}")
