"""Shared exceptions for service layer operations."""


class IdentityProviderConfigError(Exception):
    """Raised when a login is started but the identity provider is not configured."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class CodeExchangeError(Exception):
    """
    Raised when an authorization code cannot be turned into a verified identity.

    Covers provider error responses (invalid, expired or reused codes), missing or
    invalid id tokens, and state mismatches on the callback.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)


class BackendError(Exception):
    """
    Raised by the live backend when storage or the change bus fails.

    The live layer catches this, logs it, and leaves its state unchanged.
    """

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")
