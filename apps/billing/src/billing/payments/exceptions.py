from __future__ import annotations


class PaymentError(RuntimeError):
    """Base class for payment domain errors."""


class PaymentConfigurationError(PaymentError):
    """Raised when the payment integration is not properly configured."""


class PaymentValidationError(PaymentError):
    """Raised when a payment request is malformed; nothing has been persisted."""


class InvalidPhoneNumberError(PaymentValidationError):
    """Raised when a number is not a Tanzanian mobile number."""

    def __init__(self, phone_number: str) -> None:
        super().__init__(
            "Phone number must be a Tanzanian mobile number "
            "(0XXXXXXXXX, +255XXXXXXXXX or 255XXXXXXXXX)"
        )
        self.phone_number = phone_number


class PaymentProductNotFoundError(PaymentError):
    """Raised when a requested plan or credit package is unknown."""


class PaymentNotFoundError(PaymentError):
    """Raised when a payment attempt cannot be located."""


class PaymentForbiddenError(PaymentError):
    """Raised when a user acts on a payment attempt they do not own."""


class PaymentSignatureError(PaymentError):
    """Raised when an incoming webhook fails signature verification."""


class PaymentProviderError(PaymentError):
    """Raised when the provider rejects a request or answers with an unusable body."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PaymentProviderUnavailableError(PaymentError):
    """Raised on timeouts or connectivity failures; safe to retry with a new attempt."""
