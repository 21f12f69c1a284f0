"""Domain error taxonomy shared by every module.

Services and adapters raise subclasses of these categories; the outer
layers (HTTP, consumers) map ``status_code`` and ``code`` to their own
protocol without inspecting concrete classes.

- ``ValidationFailed``: bad input shape/range, raised before side effects.
- ``StateConflict``: wrong status for the requested transition.
- ``ResourceNotFound``: referenced entity does not exist for the tenant.
- ``PaymentFailed``: the payment provider declined or errored.
- ``DependencyUnavailable``: a collaborator is unreachable or kept failing
  after retries; callers may retry the whole saga.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base class for every business error raised by the platform."""

    code: str = "domain_error"
    status_code: int = 400

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)

    def as_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationFailed(DomainError):
    code = "validation_failed"
    status_code = 400


class InvalidInput(ValidationFailed):
    """Input value is out of the accepted range."""

    code = "invalid_input"


class StateConflict(DomainError):
    code = "state_conflict"
    status_code = 409


class ResourceNotFound(DomainError):
    code = "not_found"
    status_code = 404


class PaymentFailed(DomainError):
    code = "payment_failed"
    status_code = 402


class DependencyUnavailable(DomainError):
    """A collaborator service is unavailable."""

    code = "dependency_unavailable"
    status_code = 503

    def __init__(self, message: Optional[str] = None, service: str = "") -> None:
        self.service = service
        super().__init__(message)

    def as_dict(self) -> Dict[str, Any]:
        data = super().as_dict()
        if self.service:
            data["service"] = self.service
        return data


class InsufficientInventory(StateConflict):
    """Requested quantities are not available in inventory."""

    code = "insufficient_inventory"

    def __init__(
        self, unavailable_items: Optional[list[str]] = None, message: Optional[str] = None
    ) -> None:
        self.unavailable_items = list(unavailable_items or [])
        if message is None:
            message = "Insufficient inventory for products: " + ", ".join(
                self.unavailable_items
            )
        super().__init__(message)

    def as_dict(self) -> Dict[str, Any]:
        data = super().as_dict()
        data["unavailable_items"] = self.unavailable_items
        return data


class CollaboratorRejected(StateConflict):
    """A collaborator service rejected the request."""

    code = "collaborator_rejected"

    def __init__(
        self, message: Optional[str] = None, service: str = "", status: int = 0
    ) -> None:
        self.service = service
        self.status = status
        super().__init__(message)
