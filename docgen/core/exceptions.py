"""Core custom exceptions for the generation core.

Exceptions travel inside the library; the orchestrator turns each of them into a
failed ``GenerationResult`` tagged with its ``ErrorKind`` so callers branch on data.
"""

from enum import Enum


class ErrorKind(str, Enum):
    TEMPLATE_NOT_FOUND = "template_not_found"
    CONTEXT_OVERFLOW = "context_overflow"
    CIRCUIT_OPEN = "circuit_open"
    PROVIDER_CALL = "provider_call"
    PROVIDER_FATAL = "provider_fatal"
    NO_BACKEND = "no_backend"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    UNEXPECTED = "unexpected"


class GenerationError(Exception):
    """Base exception for generation-related errors."""

    kind: ErrorKind = ErrorKind.UNEXPECTED


class ConfigurationError(GenerationError):
    """Exception for configuration-related errors (e.g., unreadable template catalogue, invalid settings)."""


class TemplateNotFound(ConfigurationError):
    """No prompt template could be resolved, not even the generic fallback."""

    kind = ErrorKind.TEMPLATE_NOT_FOUND


class ContextOverflow(ConfigurationError):
    """The mandatory context fragment does not fit the smallest budget tier."""

    kind = ErrorKind.CONTEXT_OVERFLOW

    def __init__(self, source: str, deficit_tokens: int, deficit_chars: int, budget_tokens: int):
        self.source = source
        self.deficit_tokens = deficit_tokens
        self.deficit_chars = deficit_chars
        self.budget_tokens = budget_tokens
        super().__init__(
            f"Mandatory context fragment '{source}' exceeds the smallest budget tier "
            f"({budget_tokens} tokens) by {deficit_tokens} tokens (~{deficit_chars} chars)"
        )


class CircuitOpenError(GenerationError):
    """The backend's circuit is open; the call was not attempted."""

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, backend_id: str, retry_after_s: float):
        self.backend_id = backend_id
        self.retry_after_s = retry_after_s
        super().__init__(f"Circuit open for backend '{backend_id}', retry after {retry_after_s:.1f}s")


class ProviderCallError(GenerationError):
    """A backend kept failing transiently until the retry policy gave up."""

    kind = ErrorKind.PROVIDER_CALL

    def __init__(self, backend_id: str, attempts: int, last_error: BaseException | None):
        self.backend_id = backend_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"All {attempts} attempts against backend '{backend_id}' failed. Last error: {last_error}")


class NoBackendAvailable(GenerationError):
    kind = ErrorKind.NO_BACKEND


# --- Errors raised by backend clients ---------------------------------------


class BackendError(GenerationError):
    """Raised when an LLM backend call fails."""

    kind = ErrorKind.PROVIDER_FATAL
    retryable: bool = False

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class RateLimitedError(BackendError):
    kind = ErrorKind.PROVIDER_CALL
    retryable = True


class ServerError(BackendError):
    kind = ErrorKind.PROVIDER_CALL
    retryable = True


class BackendTimeoutError(BackendError):
    kind = ErrorKind.PROVIDER_CALL
    retryable = True


class NetworkError(BackendError):
    kind = ErrorKind.PROVIDER_CALL
    retryable = True


class AuthError(BackendError):
    """Credentials were rejected; retrying cannot help."""


class InvalidRequestError(BackendError):
    """The backend rejected the request as malformed."""


class EmptyResponseError(BackendError):
    """The backend answered without any usable content."""
