"""Shared channel errors."""


class DeliveryError(Exception):
    """Raised when a channel fails to deliver a message."""

    def __init__(self, channel: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(f"{channel}: {message}")
        self.channel = channel
        self.status_code = status_code
