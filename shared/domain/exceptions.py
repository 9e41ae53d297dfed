"""
Domain Errors

Every error the reconciliation core raises derives from DomainError.
Each subclass carries a stable machine-readable code and the HTTP status
the API renders it with (see shared.infrastructure.exception_handler).
"""


class DomainError(Exception):
    """Base class for business-rule violations"""

    code = 'domain_error'
    status_code = 400
    default_message = 'Domain rule violated'

    def __init__(self, message: str | None = None, **context):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.context = context

    def to_dict(self) -> dict:
        payload = {'code': self.code, 'detail': self.message}
        if self.context:
            payload['context'] = {k: str(v) for k, v in self.context.items()}
        return payload


class NotFound(DomainError):
    code = 'not_found'
    status_code = 404
    default_message = 'Not found'


class PermissionDenied(DomainError):
    code = 'permission_denied'
    status_code = 403
    default_message = 'You do not have access to this resource'


class InvalidTransition(DomainError):
    """A state machine guard rejected the requested transition"""

    code = 'invalid_transition'
    status_code = 409
    default_message = 'Transition not permitted from the current state'


class ConflictError(DomainError):
    """The equipment is reserved for an intersecting date range"""

    code = 'conflict'
    status_code = 409
    default_message = 'Equipment is already reserved for the selected dates'


class PostPaymentConflict(DomainError):
    """Payment cleared but the equipment was taken meanwhile; refund needed"""

    code = 'post_payment_conflict'
    status_code = 409
    default_message = (
        'Payment was received but the equipment is no longer available for these dates. '
        'The reservation was cancelled and flagged for refund.'
    )


class ValidationFailed(DomainError):
    """Request is well-formed but breaks a business precondition"""

    code = 'invalid_request'
    status_code = 400
    default_message = 'Request cannot be processed'
