"""
Custom exception classes for the trading engine.

Provides typed exceptions for better error handling and debugging.
None of these is fatal to the engine: each one is scoped to a single
user, position or execution attempt.
"""


class BotException(Exception):
    """Base exception for all bot-related errors."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self):
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class SwapException(BotException):
    """Raised by a trade source when a single swap attempt fails."""
    pass


class SourceNotSupported(SwapException):
    """Raised when a trade source has no implementation for the requested side."""
    pass


class RouteExhausted(BotException):
    """Raised when every trade source failed for a buy or sell."""

    def __init__(self, side: str, errors: dict, **context):
        self.side = side
        self.errors = dict(errors)
        reasons = " | ".join(f"{source}: {reason}" for source, reason in self.errors.items())
        super().__init__(f"All sources failed for {side}: {reasons}", **context)


class InsufficientBalance(BotException):
    """Raised when the wallet cannot cover a buy."""
    pass


class CapacityExceeded(BotException):
    """Raised when a user already holds max_active_trades positions."""
    pass


class TransientSellFailure(BotException):
    """Raised when a monitor exit attempt failed; retried on the next tick."""
    pass


class FeedUnavailable(BotException):
    """Raised when market data could not be fetched for a cycle."""
    pass


class ConfigurationException(BotException):
    """Raised when configuration is invalid."""
    pass
