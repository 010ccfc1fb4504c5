"""Custom exceptions for Exchange Graph Tool."""


class ExchangeGraphToolError(Exception):
    """Base exception for Exchange Graph Tool errors."""


class AuthenticationError(ExchangeGraphToolError):
    """Raised when token acquisition fails."""


class ConfigurationError(ExchangeGraphToolError):
    """Raised when configuration is invalid."""


class BatchRequestError(ExchangeGraphToolError):
    """Raised when a whole batch submission fails."""


class EventDecodeError(ExchangeGraphToolError):
    """Raised when an event collection response cannot be decoded."""


class OperationCancelledError(ExchangeGraphToolError):
    """Raised when a batched operation is cancelled between batches."""
