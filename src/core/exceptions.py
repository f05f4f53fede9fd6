"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional, Dict


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors, scoped to the offending fields."""

    def __init__(
        self,
        message: str,
        field_errors: Optional[Dict[str, str]] = None,
        details: Optional[dict] = None
    ):
        self.field_errors = field_errors or {}
        super().__init__(message, details)


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class AuthorizationException(ApplicationException):
    """Exception when the caller lacks the required tenant role."""

    def __init__(
        self,
        user_id: Optional[str],
        tenant_id: str,
        required_role: str,
        details: Optional[dict] = None
    ):
        self.user_id = user_id
        self.tenant_id = tenant_id
        self.required_role = required_role
        super().__init__(
            f"User '{user_id}' requires role {required_role} on tenant '{tenant_id}'",
            details
        )


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class EvaluationException(DomainException):
    """Raised when a thread's data cannot be evaluated against its SLA."""

    def __init__(self, thread_id: str, reason: str, details: Optional[dict] = None):
        self.thread_id = thread_id
        self.reason = reason
        super().__init__(
            f"Cannot evaluate SLA for thread {thread_id}: {reason}",
            details or {"thread_id": thread_id}
        )


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


class SinkDeliveryException(ExternalServiceException):
    """Exception when an escalation could not be delivered."""

    def __init__(self, sink_name: str, message: str, details: Optional[dict] = None):
        super().__init__(sink_name, message, details)
