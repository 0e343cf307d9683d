"""Error taxonomy surfaced by the chat pipeline."""

from __future__ import annotations

APOLOGY = (
    "I apologize, but I'm having trouble processing your request right now. "
    "Please try again."
)


class HatcheryChatError(Exception):
    """Base error carrying a user-safe reply next to the technical message."""

    def __init__(self, error: str, response: str = APOLOGY) -> None:
        super().__init__(error)
        self.error = error
        self.response = response


class ConfigurationError(HatcheryChatError):
    """Credentials or endpoints are missing or malformed; never retried."""


class UpstreamUnavailableError(HatcheryChatError):
    """Every model candidate failed in a phase that cannot degrade."""


class StoreError(Exception):
    """The relational store returned an error for a query."""

    def __init__(self, table: str, message: str) -> None:
        super().__init__(f"{table}: {message}")
        self.table = table
        self.message = message
