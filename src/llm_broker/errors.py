from __future__ import annotations


class ClientError(Exception):
    """Base error for LLM client failures."""


class UnsupportedModelError(ClientError):
    def __init__(self, model: object, message: str | None = None):
        super().__init__(message or f"No backend mapping for model {model!r}.")
        self.model = model


class WrongCredentialTypeError(ClientError):
    pass


class FunctionCallMissingError(ClientError):
    """A function-role message arrived without its call payload."""


class InvalidRequestError(ClientError):
    pass


class TransportConfigurationError(ClientError):
    """Endpoint or credential data cannot produce a backend handle."""


class TransportError(ClientError):
    def __init__(self, message: str = "Upstream transport failure", *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(TransportError):
    def __init__(self, message: str = "Upstream rejected credentials", *, status_code: int | None = None):
        super().__init__(message, status_code=status_code)


class RateLimitError(TransportError):
    def __init__(self, retry_after_seconds: int | None = None, message: str = "Rate limited"):
        super().__init__(message, status_code=429)
        self.retry_after_seconds = retry_after_seconds


class UnsupportedOperationError(ClientError):
    """Backend variant cannot serve the requested completion mode."""
