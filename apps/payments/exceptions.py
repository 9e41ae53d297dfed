"""Errors raised at the payment gateway boundary."""

from shared.domain.exceptions import DomainError, NotFound


class GatewayUnavailable(DomainError):
    """Transport error or 5xx from the gateway; retry with backoff"""

    code = 'gateway_unavailable'
    status_code = 503
    default_message = 'Payment gateway is temporarily unavailable, please try again'


class PaymentGatewayError(DomainError):
    """The gateway answered, but with a rejection or a malformed body"""

    code = 'gateway_error'
    status_code = 502
    default_message = 'Payment gateway rejected the request'


class InvalidAmount(DomainError):
    code = 'invalid_amount'
    status_code = 400
    default_message = 'Payment amount must be positive'


class AmountMismatch(DomainError):
    """Gateway-reported amount or currency differs from what was charged"""

    code = 'amount_mismatch'
    status_code = 409
    default_message = 'Paid amount does not match the expected amount'


class VerificationPending(DomainError):
    """Not an error: the gateway has not settled the transaction yet"""

    code = 'verification_pending'
    status_code = 202
    default_message = 'Payment is not settled yet, check again shortly'


class PaymentNotFound(NotFound):
    code = 'payment_not_found'
    default_message = 'No payment with this reference'
