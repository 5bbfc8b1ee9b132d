"""Custom exception hierarchy for the salary advance service."""


class AdvanceServiceError(Exception):
    """Base exception for all service errors."""


class ValidationError(AdvanceServiceError):
    """Raised when a request carries invalid values."""


class InvalidStatusTransition(ValidationError):
    """Raised when an advance status change is not allowed."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot transition advance from {current} to {requested}")


class InsufficientApprovedBalance(ValidationError):
    """Raised when a withdrawal exceeds the disbursed, unwithdrawn balance."""

    def __init__(self, available):
        self.available = available
        super().__init__(
            f"Insufficient approved advance balance. Available amount: {available}"
        )


class EligibilityError(AdvanceServiceError):
    """Raised when the employee may not take the requested advance."""


class NotFoundError(AdvanceServiceError):
    """Raised when a referenced entity does not exist."""


class ConfigurationError(AdvanceServiceError):
    """Raised when configuration or employee setup is invalid or missing."""


class PaymentInitiationError(AdvanceServiceError):
    """Raised when the payment network rejects or cannot take a request."""
