"""Custom TTS exceptions."""


class TTSError(Exception):
    """Base exception for TTS-related errors."""

    def __init__(
        self, message: str, original_error: Exception | None = None
    ) -> None:
        super().__init__(message)
        self.original_error = original_error


class TTSAuthError(TTSError):
    """Exception raised for authentication failures.

    This typically occurs when:
    - API key is missing or invalid
    - Account has insufficient credits
    - API key permissions are insufficient
    """

    pass


class TTSAPIError(TTSError):
    """Exception raised for API communication errors.

    This typically occurs when:
    - API server is unavailable (5xx errors)
    - Request format is invalid (4xx errors)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, original_error)
        self.status_code = status_code


class TTSQuotaError(TTSAPIError):
    """Exception raised when the provider rejects a request for quota reasons.

    Covers server-side rate limiting (429) and exhausted character quota.
    """

    pass


class TTSTimeoutError(TTSError):
    """Exception raised when a synthesis call exceeds its time budget."""

    pass


class TTSTransportError(TTSError):
    """Exception raised when the provider cannot be reached at all.

    Connection refused, DNS failures and dropped connections end up here.
    """

    pass


class TTSEmptyResultError(TTSError):
    """Exception raised when a provider returns no audio data."""

    pass


class ConfigurationError(TTSError):
    """Exception raised for invalid configuration.

    Unlike the other errors this one is fatal: it is raised while building
    the pipeline, never while serving a request.
    """

    pass
