# rootguard/exceptions.py
"""RootGuard exception hierarchy.

Only configuration and programming errors are raised. A directory that
fails a security check is an expected outcome and is reported through
``RootsValidationResult`` instead.
"""

from typing import Any


class RootGuardError(Exception):
    """Base exception for all RootGuard errors.

    Attributes:
        message: The error message.
        context: Arbitrary keyword arguments providing additional error context.
    """

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        parts = [f"message={self.message!r}"]
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            parts.append(f"context={{{ctx_str}}}")
        return f"{self.__class__.__name__}({', '.join(parts)})"


class ConfigurationError(RootGuardError):
    """Raised for invalid factory, policy or settings arguments.

    Use this for:
    - Unknown security policy kinds
    - Rate limits outside the supported range
    - Empty or non-string allowed roots
    - Malformed environment variables or config file values
    """


class ProviderNotInitializedError(RootGuardError):
    """Raised when a ConfigurationProvider is mutated before ``initialize()``."""

    def __init__(self, operation: str) -> None:
        super().__init__(
            f"ConfigurationProvider is not initialized (called {operation})",
            operation=operation,
        )
