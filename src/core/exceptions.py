"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

Calculation and matching errors are contained per rule by the automation
engine and recorded as failed automation logs. Only storage failures
(RepositoryException) abort the enclosing ticket operation.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Storage collaborator failed or is unavailable."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


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


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ConcurrencyConflictException(RepositoryException):
    """A ticket was modified concurrently (stale version)."""

    def __init__(self, ticket_id: str, expected_version: int):
        self.ticket_id = ticket_id
        self.expected_version = expected_version
        super().__init__(
            f"Ticket {ticket_id} was modified concurrently",
            {"ticket_id": ticket_id, "expected_version": expected_version}
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


class NotifierException(ExternalServiceException):
    """Exception for notification delivery failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notifier", message, details)


class InvalidTransitionException(DomainException):
    """The status machine rejected a transition."""

    def __init__(self, current_status: str, new_status: str):
        self.current_status = current_status
        self.new_status = new_status
        super().__init__(
            f"Transition from {current_status} to {new_status} is not permitted",
            {"current_status": current_status, "attempted_status": new_status}
        )


class MissingSLAProfileException(DomainException):
    """No SLA profile could be resolved, not even a default one."""

    def __init__(self, ticket_id: Optional[str] = None):
        self.ticket_id = ticket_id
        super().__init__(
            "No SLA profile resolvable and no default profile configured",
            {"ticket_id": ticket_id}
        )


class MalformedRuleConditionException(DomainException):
    """A rule condition references an unknown field or operator."""

    def __init__(self, rule_id: Optional[str], reason: str):
        self.rule_id = rule_id
        super().__init__(
            f"Malformed condition: {reason}",
            {"rule_id": rule_id}
        )


class ActionExecutionException(DomainException):
    """An automation action could not be applied."""

    def __init__(self, action_type: str, reason: str, details: Optional[dict] = None):
        self.action_type = action_type
        super().__init__(f"{action_type} failed: {reason}", details)
