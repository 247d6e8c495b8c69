from __future__ import annotations


class SwapWatchError(Exception):
    """Base class for every error raised by swapwatch."""


class TransientNetwork(SwapWatchError):
    """Timeouts, dropped connections, 5xx responses. Retried with backoff."""


class RateLimited(SwapWatchError):
    """The endpoint refused the request for exceeding its quota."""

    def __init__(self, message: str = "rate limited", retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class NotFound(SwapWatchError):
    """The node returned null for a block, transaction or receipt."""


class MalformedData(SwapWatchError):
    """A payload could not be parsed (bad JSON-RPC result, reverted eth_call...)."""


class DecodeMismatch(SwapWatchError):
    """Selector matched a known method but its fields could not be extracted."""


class FatalExhaustion(SwapWatchError):
    """Every configured endpoint failed within one rotation cycle."""


class ConfigError(SwapWatchError):
    """Invalid or incomplete configuration."""
