"""Delivery channels for alerts."""

from validator_rug_tracker.alerter.channels.base import DeliveryError
from validator_rug_tracker.alerter.channels.discord import DiscordChannel
from validator_rug_tracker.alerter.channels.email import ResendEmailChannel

__all__ = [
    "DeliveryError",
    "DiscordChannel",
    "ResendEmailChannel",
]
