"""Custom exceptions for ratewarden."""


class RateWardenError(Exception):
    """Base class for all errors raised by ratewarden itself.

    Storage backends raise their own exceptions (for example
    ``redis.exceptions.ConnectionError``); those are never wrapped.
    """

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class RuleConfigurationError(RateWardenError):
    """Raised by ``Limiter.build()`` when a required piece is missing.

    Always raised at setup time, never while handling a request.
    """

    def __init__(self, missing: str, builder_method: str, hint: str = ""):
        self.missing = missing
        self.builder_method = builder_method
        message = f"Cannot build rule: {missing} must be defined. Use {builder_method}."
        if hint:
            message = f"{message} {hint}"
        super().__init__(message)


class InvalidStrategyOptionsError(RateWardenError, ValueError):
    """Raised when a strategy receives a non-positive option."""

    def __init__(self, strategy: str, detail: str):
        self.strategy = strategy
        super().__init__(f"{strategy}: {detail}")
