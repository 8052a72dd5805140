"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class InvalidAmount(DomainException):
    """Monetary amount is zero, negative, outside payment limits, or mixes currencies"""

    pass


class InvalidSplitConfiguration(DomainException):
    """Split parties or tier configuration cannot produce a valid split"""

    pass


class InvalidFeeStructure(DomainException):
    """Fee structure override has unknown keys or out-of-range rates"""

    pass


class InvalidRefundReason(DomainException):
    """Refund reason is not a member of the refund reason enumeration"""

    pass


class NonRefundable(DomainException):
    """Refund reason or payment age excludes the payment from refunds"""

    pass


class PaymentNotRefundable(DomainException):
    """Payment is not in a state that can be refunded"""

    pass


class RefundExceedsBalance(DomainException):
    """Requested refund exceeds the remaining refundable balance"""

    pass


class PaymentNotFound(DomainException):
    """No payment intent with the given identifier"""

    pass


class RefundNotFound(DomainException):
    """No refund request with the given identifier"""

    pass


class DisputeNotFound(DomainException):
    """No dispute case with the given identifier"""

    pass


class DisputeAlreadyOpen(DomainException):
    """Payment intent already has an unresolved dispute"""

    pass


class InvalidStateTransition(DomainException):
    """Requested status change is not an edge of the state machine"""

    pass


class ConcurrentModificationError(DomainException):
    """Payment intent was modified by another writer since it was read"""

    pass


class RailCommunicationError(DomainException):
    """Payment rail unreachable, timed out, or returned a server error.

    Transient and retryable. ``may_have_moved_money`` is True when the
    request reached the rail but no response came back, so a retry must
    reuse the same idempotency key.
    """

    def __init__(self, message: str, rail: str, operation: str, may_have_moved_money: bool = False):
        super().__init__(message)
        self.rail = rail
        self.operation = operation
        self.may_have_moved_money = may_have_moved_money


class RailRequestRejected(DomainException):
    """Payment rail refused the request (4xx); no money moved"""

    def __init__(self, message: str, rail: str, operation: str, status_code: int):
        super().__init__(message)
        self.rail = rail
        self.operation = operation
        self.status_code = status_code


class WebhookSignatureInvalid(DomainException):
    """Webhook payload failed signature verification and must be dropped"""

    pass
