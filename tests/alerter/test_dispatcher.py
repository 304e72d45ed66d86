"""Tests for alert delivery."""

import asyncio
import json
from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from validator_rug_tracker.alerter.channels import DeliveryError, DiscordChannel, ResendEmailChannel
from validator_rug_tracker.alerter.channels.discord import DISCORD_CONTENT_LIMIT
from validator_rug_tracker.alerter.dispatcher import AlertDispatcher
from validator_rug_tracker.alerter.formatter import AlertFormatter
from validator_rug_tracker.detector.models import Classification, MetricType
from validator_rug_tracker.storage.repos import EventDTO

VOTE = "Vote111111111111111111111111111111111111111"


def create_alert(formatter: AlertFormatter, classification: Classification = Classification.RUG):
    event = EventDTO(
        vote_pubkey=VOTE,
        epoch=812,
        metric_type=MetricType.INFLATION,
        classification=classification,
        from_value=Decimal("5"),
        to_value=Decimal("100"),
        delta=Decimal("95"),
    )
    return formatter.format_commission_change(event, name="Pumpkin")


@pytest.fixture
def formatter() -> AlertFormatter:
    return AlertFormatter()


@pytest.fixture
def email_channel() -> AsyncMock:
    channel = AsyncMock()
    channel.name = "email"
    return channel


@pytest.fixture
def discord_channel() -> AsyncMock:
    channel = AsyncMock()
    channel.name = "discord"
    return channel


class TestAlertDispatcher:
    """Tests for AlertDispatcher."""

    @pytest.mark.asyncio
    async def test_sends_one_email_per_recipient(self, formatter, email_channel, discord_channel):
        dispatcher = AlertDispatcher(formatter, email=email_channel, discord=discord_channel)

        result = await dispatcher.dispatch(create_alert(formatter), ["a@example.com", "b@example.com"])

        assert result.success_count == 2
        assert result.failure_count == 0
        assert result.discord_sent is True
        assert result.all_succeeded
        assert email_channel.send.await_count == 2
        sent_to = sorted(call.kwargs["to"] for call in email_channel.send.await_args_list)
        assert sent_to == ["a@example.com", "b@example.com"]
        first = email_channel.send.await_args_list[0].kwargs
        assert "unsubscribe?email=" in first["text"]
        discord_channel.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_counted_not_raised(self, formatter, email_channel):
        async def send(*, to, subject, text, html=None):
            if to == "bad@example.com":
                raise DeliveryError("email", "HTTP 500", status_code=500)

        email_channel.send.side_effect = send
        dispatcher = AlertDispatcher(formatter, email=email_channel)

        result = await dispatcher.dispatch(create_alert(formatter), ["ok@example.com", "bad@example.com"])

        assert result.success_count == 1
        assert result.failure_count == 1
        assert result.failed_recipients == ["bad@example.com"]
        assert not result.all_succeeded

    @pytest.mark.asyncio
    async def test_timeout_counted_as_failure(self, formatter, email_channel):
        async def slow_send(**kwargs):
            await asyncio.sleep(1)

        email_channel.send.side_effect = slow_send
        dispatcher = AlertDispatcher(formatter, email=email_channel, send_timeout_seconds=0.01)

        result = await dispatcher.dispatch(create_alert(formatter), ["slow@example.com"])

        assert result.failure_count == 1

    @pytest.mark.asyncio
    async def test_discord_failure_recorded(self, formatter, discord_channel):
        discord_channel.send.side_effect = DeliveryError("discord", "HTTP 429", status_code=429)
        dispatcher = AlertDispatcher(formatter, discord=discord_channel)

        result = await dispatcher.dispatch(create_alert(formatter), [])

        assert result.discord_sent is False
        assert not result.all_succeeded

    @pytest.mark.asyncio
    async def test_non_rug_skips_discord(self, formatter, email_channel, discord_channel):
        dispatcher = AlertDispatcher(formatter, email=email_channel, discord=discord_channel)

        result = await dispatcher.dispatch(create_alert(formatter, Classification.CAUTION), ["a@example.com"])

        assert result.discord_sent is None
        discord_channel.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dry_run_sends_nothing(self, formatter, email_channel, discord_channel, caplog):
        dispatcher = AlertDispatcher(formatter, email=email_channel, discord=discord_channel, dry_run=True)

        with caplog.at_level("INFO"):
            result = await dispatcher.dispatch(create_alert(formatter), ["a@example.com"])

        assert result.attempted == 0
        email_channel.send.assert_not_awaited()
        discord_channel.send.assert_not_awaited()
        assert "[DRY RUN] Would send alert" in caplog.text


# ============================================================================
# Channel Tests
# ============================================================================


class TestResendEmailChannel:
    """Tests for the Resend HTTP channel."""

    @pytest.mark.asyncio
    async def test_posts_message(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "msg_1"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            channel = ResendEmailChannel("re_key", "alerts@example.com", http)
            await channel.send(to="a@example.com", subject="Hi", text="body", html="<p>body</p>")

        assert len(seen) == 1
        request = seen[0]
        assert str(request.url) == "https://api.resend.com/emails"
        assert request.headers["Authorization"] == "Bearer re_key"
        assert b'"to":["a@example.com"]' in request.content.replace(b" ", b"")

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(422, text="invalid"))
        async with httpx.AsyncClient(transport=transport) as http:
            channel = ResendEmailChannel("re_key", "alerts@example.com", http)
            with pytest.raises(DeliveryError) as exc_info:
                await channel.send(to="a@example.com", subject="Hi", text="body")

        assert exc_info.value.status_code == 422


class TestDiscordChannel:
    """Tests for the Discord webhook channel."""

    @pytest.mark.asyncio
    async def test_truncates_long_content(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            await DiscordChannel("https://discord.example.com/hook", http).send("x" * 5000)

        body = json.loads(seen[0].content)
        assert len(body["content"]) == DISCORD_CONTENT_LIMIT
        assert body["content"].endswith("...")

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("boom", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            with pytest.raises(DeliveryError):
                await DiscordChannel("https://discord.example.com/hook", http).send("hello")
