"""Discord webhook delivery."""

from __future__ import annotations

import logging

import httpx

from validator_rug_tracker.alerter.channels.base import DeliveryError

logger = logging.getLogger(__name__)

DISCORD_CONTENT_LIMIT = 2000


class DiscordChannel:
    name = "discord"

    def __init__(self, webhook_url: str, http: httpx.AsyncClient) -> None:
        self._webhook_url = webhook_url
        self._http = http

    async def send(self, content: str) -> None:
        if len(content) > DISCORD_CONTENT_LIMIT:
            content = content[: DISCORD_CONTENT_LIMIT - 3] + "..."
        try:
            response = await self._http.post(self._webhook_url, json={"content": content})
        except httpx.HTTPError as e:
            raise DeliveryError(self.name, str(e)) from e
        if response.is_error:
            raise DeliveryError(
                self.name,
                f"HTTP {response.status_code}",
                status_code=response.status_code,
            )
        logger.debug("Discord message posted")
