"""Email delivery through the Resend HTTP API."""

from __future__ import annotations

import logging

import httpx

from validator_rug_tracker.alerter.channels.base import DeliveryError

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class ResendEmailChannel:
    """Sends one email per recipient so addresses are never shared."""

    name = "email"

    def __init__(
        self,
        api_key: str,
        from_address: str,
        http: httpx.AsyncClient,
        *,
        api_url: str = RESEND_API_URL,
    ) -> None:
        self._api_key = api_key
        self._from_address = from_address
        self._http = http
        self._api_url = api_url

    async def send(self, *, to: str, subject: str, text: str, html: str | None = None) -> None:
        """Send a single message.

        Raises:
            DeliveryError: On transport failure or a non-2xx response.
        """
        payload: dict[str, object] = {
            "from": self._from_address,
            "to": [to],
            "subject": subject,
            "text": text,
        }
        if html is not None:
            payload["html"] = html
        try:
            response = await self._http.post(
                self._api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as e:
            raise DeliveryError(self.name, str(e)) from e
        if response.is_error:
            raise DeliveryError(
                self.name,
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        logger.debug("Email sent to %s", to)
