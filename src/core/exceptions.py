"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Errors raised from the completion
path carry the attempt trace so it survives the error route.
"""

from typing import Optional, Any, Sequence


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class LLMException(ExternalServiceException):
    """Exception for LLM API failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("LLM Service", message, details)


class CompletionFatalError(LLMException):
    """
    Request-shape failure that aborts the whole completion search.

    Raised for any status outside the retryable / not-found sets; retrying or
    switching model or credential will not fix it.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        trace: Sequence[Any] = (),
        details: Optional[dict] = None
    ):
        self.status_code = status_code
        self.trace = tuple(trace)
        super().__init__(message, details or {"status_code": status_code})


class PipelineException(ExternalServiceException):
    """Exception for delegated pipeline service failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Pipeline Service", message, details)


class VectorStoreException(ExternalServiceException):
    """Exception for vector store failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Vector Store", message, details)


class TriageFailedException(ApplicationException):
    """
    A triage run produced no completion.

    ``trace`` is the caller-facing trace payload so the operator can still
    inspect every attempt.
    """

    def __init__(self, message: str, trace: Optional[dict] = None):
        self.trace = trace or {}
        super().__init__(message, {"trace": self.trace})
