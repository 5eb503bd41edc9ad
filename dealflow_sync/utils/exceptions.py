"""
Custom exception classes for the deal flow transcript sync layer.

Provides a hierarchy of exceptions for different error categories:
- Transcript provider errors (transient and permanent)
- Analysis and momentum stage failures
- Session coordination errors
- Persistence, validation and configuration errors
"""

from typing import Any, Optional


class DealSyncError(Exception):
    """
    Base exception for all deal flow sync errors.

    All custom exceptions in this project inherit from this class,
    allowing for broad exception catching when needed.
    """

    def __init__(
        self,
        message: str,
        *,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Additional error details as key-value pairs
            cause: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        """Return string representation with details."""
        base = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            base = f"{base} ({details_str})"
        if self.cause:
            base = f"{base} [caused by: {self.cause}]"
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "cause": str(self.cause) if self.cause else None,
        }


class TranscriptProviderError(DealSyncError):
    """
    Exception for transcript provider errors.

    Raised when communication with the transcript provider fails or
    returns an error. Use the transient/permanent subclasses to tell the
    scheduler whether the attempt may be repeated.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        endpoint: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        """
        Initialize provider error.

        Args:
            message: Error message
            status_code: HTTP status code from the API
            response_body: Raw response body
            endpoint: API endpoint that was called
            **kwargs: Additional arguments passed to parent
        """
        details = kwargs.pop("details", {})
        if status_code is not None:
            details["status_code"] = status_code
        if response_body is not None:
            details["response_body"] = response_body[:500]
        if endpoint is not None:
            details["endpoint"] = endpoint

        super().__init__(message, details=details, **kwargs)
        self.status_code = status_code
        self.response_body = response_body
        self.endpoint = endpoint

    @property
    def is_auth_error(self) -> bool:
        """Check if this is an authentication error."""
        return self.status_code in (401, 403)

    @property
    def is_not_found(self) -> bool:
        """Check if the resource was not found."""
        return self.status_code == 404

    @property
    def is_rate_limited(self) -> bool:
        """Check if we hit rate limits."""
        return self.status_code == 429

    @property
    def is_server_error(self) -> bool:
        """Check if this is a server-side error."""
        return self.status_code is not None and self.status_code >= 500


class TransientProviderError(TranscriptProviderError):
    """
    Provider error that may succeed on a later attempt.

    Network failures, timeouts, rate limits and 5xx responses.
    """

    def __init__(
        self,
        message: str,
        *,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        """
        Initialize transient provider error.

        Args:
            message: Error message
            retry_after: Suggested wait time in seconds before retry
            **kwargs: Additional arguments passed to parent
        """
        details = kwargs.pop("details", {})
        if retry_after is not None:
            details["retry_after"] = retry_after

        super().__init__(message, details=details, **kwargs)
        self.retry_after = retry_after


class RateLimitError(TransientProviderError):
    """
    Exception for rate limit errors.

    Raised when the provider rejects a request with HTTP 429.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        service: str = "unknown",
        **kwargs: Any,
    ) -> None:
        """
        Initialize rate limit error.

        Args:
            message: Error message
            service: Service that rate limited us (meetgeek, openai)
            **kwargs: Additional arguments passed to parent
        """
        details = kwargs.pop("details", {})
        details["service"] = service
        kwargs.setdefault("status_code", 429)

        super().__init__(message, details=details, **kwargs)
        self.service = service


class PermanentProviderError(TranscriptProviderError):
    """
    Provider error that will not go away by retrying.

    For example a meeting ID the provider does not know, or rejected
    credentials. Terminates the owning sync session immediately.
    """


class AnalysisFailedError(DealSyncError):
    """
    Exception for transcript analysis failures.

    Non-fatal to the sync session: the transcript stays persisted.
    """

    def __init__(
        self,
        message: str,
        *,
        meeting_id: Optional[str] = None,
        stage: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        """
        Initialize analysis error.

        Args:
            message: Error message
            meeting_id: Meeting whose transcript was being analyzed
            stage: Analysis step where the error occurred
                   (e.g., 'load_transcript', 'engine', 'parse', 'persist')
            **kwargs: Additional arguments passed to parent
        """
        details = kwargs.pop("details", {})
        if meeting_id is not None:
            details["meeting_id"] = meeting_id
        if stage is not None:
            details["stage"] = stage

        super().__init__(message, details=details, **kwargs)
        self.meeting_id = meeting_id
        self.stage = stage


class MomentumComputeFailedError(DealSyncError):
    """
    Exception for momentum recomputation failures.

    The deal keeps its last-known momentum state.
    """

    def __init__(
        self,
        message: str,
        *,
        deal_id: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if deal_id is not None:
            details["deal_id"] = deal_id

        super().__init__(message, details=details, **kwargs)
        self.deal_id = deal_id


class SessionAlreadyActiveError(DealSyncError):
    """
    Raised by the session registry when a meeting already has live work.

    Callers treat this as the "already active" outcome, not a failure.
    """

    def __init__(
        self,
        meeting_id: str,
        *,
        state: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        details["meeting_id"] = meeting_id
        if state is not None:
            details["state"] = state

        super().__init__(
            "Sync session already active", details=details, **kwargs
        )
        self.meeting_id = meeting_id
        self.state = state


class PersistenceError(DealSyncError):
    """
    Exception for persistence store errors.

    Raised when a read or write against the store fails.
    """

    def __init__(
        self,
        message: str,
        *,
        entity: Optional[str] = None,
        key: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if entity is not None:
            details["entity"] = entity
        if key is not None:
            details["key"] = key

        super().__init__(message, details=details, **kwargs)
        self.entity = entity
        self.key = key


class ValidationError(DealSyncError):
    """
    Exception for data validation errors.

    Raised when input data fails validation checks.
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        constraints: Optional[list[str]] = None,
        **kwargs: Any,
    ) -> None:
        """
        Initialize validation error.

        Args:
            message: Error message
            field: Name of the field that failed validation
            value: The invalid value (will be truncated if too long)
            constraints: List of constraints that were violated
            **kwargs: Additional arguments passed to parent
        """
        details = kwargs.pop("details", {})
        if field is not None:
            details["field"] = field
        if value is not None:
            str_value = str(value)
            details["value"] = str_value[:100] if len(str_value) > 100 else str_value
        if constraints is not None:
            details["constraints"] = constraints

        super().__init__(message, details=details, **kwargs)
        self.field = field
        self.value = value
        self.constraints = constraints or []


class ConfigurationError(DealSyncError):
    """
    Exception for configuration errors.

    Raised when required configuration is missing or invalid.
    """

    def __init__(
        self,
        message: str,
        *,
        missing_keys: Optional[list[str]] = None,
        invalid_keys: Optional[dict[str, str]] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        if invalid_keys:
            details["invalid_keys"] = invalid_keys

        super().__init__(message, details=details, **kwargs)
        self.missing_keys = missing_keys or []
        self.invalid_keys = invalid_keys or {}
