"""Best-effort alert delivery.

Failures are logged and counted in the returned DispatchResult; they never
propagate, so a persisted event is never undone by a delivery problem.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from validator_rug_tracker.alerter.channels.base import DeliveryError
from validator_rug_tracker.alerter.formatter import AlertFormatter, truncate_pubkey
from validator_rug_tracker.alerter.models import DispatchResult, FormattedAlert

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_SENDS = 10


class EmailChannel(Protocol):
    name: str

    async def send(self, *, to: str, subject: str, text: str, html: str | None = None) -> None: ...


class WebhookChannel(Protocol):
    name: str

    async def send(self, content: str) -> None: ...


class AlertDispatcher:
    """Sends a formatted alert to each recipient individually.

    Example:
        ```python
        dispatcher = AlertDispatcher(formatter, email=email_channel, discord=discord_channel)
        result = await dispatcher.dispatch(alert, ["a@example.com"])
        ```
    """

    def __init__(
        self,
        formatter: AlertFormatter,
        *,
        email: EmailChannel | None = None,
        discord: WebhookChannel | None = None,
        dry_run: bool = False,
        max_concurrent_sends: int = DEFAULT_MAX_CONCURRENT_SENDS,
        send_timeout_seconds: float | None = None,
    ) -> None:
        self._formatter = formatter
        self._email = email
        self._discord = discord
        self._dry_run = dry_run
        self._semaphore = asyncio.Semaphore(max_concurrent_sends)
        self._send_timeout = send_timeout_seconds

    async def dispatch(self, alert: FormattedAlert, recipients: list[str]) -> DispatchResult:
        """Deliver ``alert`` by email to every recipient and to Discord if set."""
        result = DispatchResult()

        if self._dry_run:
            logger.info(
                "[DRY RUN] Would send alert: subject=%r, validator=%s, recipients=%d, discord=%s",
                alert.subject,
                truncate_pubkey(alert.vote_pubkey),
                len(recipients),
                alert.discord_content is not None,
            )
            return result

        if alert.discord_content is not None and self._discord is not None:
            result.discord_sent = await self._send_discord(self._discord, alert.discord_content)

        if not recipients:
            logger.debug("No recipients for %s alert on %s", alert.badge, alert.vote_pubkey)
            return result
        if self._email is None:
            logger.warning("Email channel not configured; %d recipients skipped", len(recipients))
            return result

        outcomes = await asyncio.gather(*(self._send_email(self._email, alert, email) for email in recipients))
        for email, ok in zip(recipients, outcomes, strict=True):
            if ok:
                result.success_count += 1
            else:
                result.failure_count += 1
                result.failed_recipients.append(email)

        if result.failure_count:
            logger.warning(
                "Alert partially failed: %d/%d emails sent for %s",
                result.success_count,
                result.attempted,
                alert.vote_pubkey,
            )
        else:
            logger.info("Alert sent: %r to %d recipients", alert.subject, result.success_count)
        return result

    async def _send_email(self, channel: EmailChannel, alert: FormattedAlert, email: str) -> bool:
        text, body_html = self._formatter.personalize(alert, email)
        async with self._semaphore:
            try:
                await asyncio.wait_for(
                    channel.send(to=email, subject=alert.subject, text=text, html=body_html),
                    timeout=self._send_timeout,
                )
            except (DeliveryError, TimeoutError) as e:
                logger.warning("Email delivery to %s failed: %s", email, e)
                return False
        return True

    async def _send_discord(self, channel: WebhookChannel, content: str) -> bool:
        try:
            await asyncio.wait_for(channel.send(content), timeout=self._send_timeout)
        except (DeliveryError, TimeoutError) as e:
            logger.warning("Discord delivery failed: %s", e)
            return False
        return True
