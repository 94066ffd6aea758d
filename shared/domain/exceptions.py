"""
Domain Errors

Every failure the booking and settlement engine reports to a caller is a
DomainError. Each carries a stable machine-readable ``code`` and the HTTP
status the API layer answers with.
"""


class DomainError(Exception):
    """Base class for errors surfaced to actors"""

    code = 'domain_error'
    http_status = 400
    default_message = 'Operation is not allowed.'

    def __init__(self, message: str | None = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {'detail': self.message, 'code': self.code}
        if self.context:
            payload['context'] = {key: str(value) for key, value in self.context.items()}
        return payload


# ===== Booking lifecycle =====

class InvalidTransition(DomainError):
    code = 'invalid_transition'
    http_status = 409
    default_message = 'This action is not permitted in the booking\'s current state.'


class AlreadyTerminal(InvalidTransition):
    code = 'already_terminal'
    default_message = 'The booking is in a terminal state and can no longer change.'


class Forbidden(DomainError):
    code = 'forbidden'
    http_status = 403
    default_message = 'You are not allowed to perform this action.'


class ConcurrentUpdate(DomainError):
    """Optimistic version check lost against a concurrent writer"""

    code = 'concurrent_update'
    http_status = 409
    default_message = 'The booking was modified concurrently, please retry.'


class BookingNotFound(DomainError):
    code = 'booking_not_found'
    http_status = 404
    default_message = 'Booking not found.'


# ===== Settlement guards =====

class NotEligible(DomainError):
    code = 'not_eligible'
    http_status = 409
    default_message = 'The booking is not eligible for settlement.'


class AlreadyPaidOut(DomainError):
    code = 'already_paid_out'
    http_status = 409
    default_message = 'The booking has already been paid out.'


class RecipientNotVerified(DomainError):
    code = 'recipient_not_verified'
    http_status = 409
    default_message = 'Recipient has not completed identity verification.'


class NoDestination(DomainError):
    code = 'no_destination'
    http_status = 409
    default_message = 'Recipient has not configured a payout destination.'


# ===== Gateway =====

class GatewayError(DomainError):
    code = 'gateway_error'
    http_status = 502


class GatewayUnavailable(GatewayError):
    """Timeouts, connection failures and 5xx answers. Safe to retry."""

    code = 'gateway_unavailable'
    http_status = 503
    default_message = 'Payment provider is temporarily unavailable.'


class GatewayRejected(GatewayError):
    """The provider refused the request. Carries the provider's reason."""

    code = 'gateway_rejected'
    default_message = 'Payment provider rejected the request.'

    def __init__(self, message: str | None = None, payload: dict | None = None, **context):
        self.payload = payload or {}
        super().__init__(message, **context)


# ===== Disputes =====

class InvalidSplit(DomainError):
    code = 'invalid_split'
    default_message = 'Refund and payout exceed the amount available after the dispute fee.'


class InvalidDispute(DomainError):
    code = 'invalid_dispute'
    default_message = 'The dispute request is invalid.'


class DisputeAlreadyOpen(DomainError):
    code = 'dispute_already_open'
    http_status = 409
    default_message = 'A dispute is already active for this booking.'


class DisputeNotFound(DomainError):
    code = 'dispute_not_found'
    http_status = 404
    default_message = 'Dispute not found.'
