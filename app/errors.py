from typing import Any, Dict, Optional


class CheckoutError(Exception):
    """Base class for every error the checkout flow renders as ``{"error": ...}``."""

    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        http_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        # status returned by the CRM, when a response was received
        self.http_status = http_status
        self.details = details or {}
        # set once the failing outbound call already has a payment_logs row
        self.audited = False
        super().__init__(message)


class InvalidInput(CheckoutError):
    status_code = 400


class ConfigurationMissing(CheckoutError):
    def __init__(self, message: str = "ClubReady configuration not found", **kwargs):
        super().__init__(message, **kwargs)


class CrmUnavailable(CheckoutError):
    pass


class CrmRejected(CheckoutError):
    pass


class GatewayUnavailable(CrmUnavailable):
    pass


class GatewayRejected(CrmRejected):
    pass


class UnexpectedResponseShape(CheckoutError):
    pass


class PersistenceError(CheckoutError):
    def __init__(self, message: str = "Database error", **kwargs):
        super().__init__(message, **kwargs)


class OfferingNotFound(CheckoutError):
    def __init__(self, message: str = "Package not found", **kwargs):
        super().__init__(message, **kwargs)


class CustomerNotFound(CheckoutError):
    def __init__(self, message: str = "Prospect not found", **kwargs):
        super().__init__(message, **kwargs)


class TransactionNotFound(CheckoutError):
    status_code = 404

    def __init__(self, message: str = "Transaction not found", **kwargs):
        super().__init__(message, **kwargs)


class TransactionAlreadyClosed(CheckoutError):
    pass
