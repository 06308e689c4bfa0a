"""Service error hierarchy.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts, storage I/O)
- PermanentError: Non-retryable errors (authentication, validation, content policy)

The job worker retries TransientError through the work queue and fails the job
immediately on PermanentError.
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Provider unavailable (5xx)
    - Object storage I/O failures
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400, 422)
    - Missing input assets
    - Configuration errors
    """

    pass


# Generation provider errors
class GenerationTimeoutError(TransientError):
    """Provider call exceeded the configured timeout."""

    pass


class ContentPolicyError(PermanentError):
    """Provider rejected the inputs under its content policy."""

    pass


class InvalidInputError(PermanentError):
    """Job inputs are missing or unusable."""

    pass


# Object storage errors
class StorageError(TransientError):
    """Object storage operation failed."""

    pass


class ResultDownloadError(TransientError):
    """Downloading a provider result failed."""

    pass


# Webhook errors
class UnmatchedCompletionError(PermanentError):
    """Completion webhook names no known job, or a prediction the job does not hold."""

    pass
