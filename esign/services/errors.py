"""
Errors raised by the signing engine.

Each refusal carries a stable code and a message a caller can show as-is.
None of these mean something went wrong with the service: they are the
engine saying no, and no state has been changed when one is raised.
"""


class SigningError(Exception):
    code = "signing_error"
    status_code = 400

    def __init__(self, message: str, **details):
        self.message = message
        self.details = details
        super().__init__(self.message)


class NotFoundError(SigningError):
    code = "not_found"
    status_code = 404


class InvalidStateError(SigningError):
    code = "invalid_state"
    status_code = 409


class OutOfOrderError(SigningError):
    code = "out_of_order"
    status_code = 409


class IncompleteConsentError(SigningError):
    code = "incomplete_consent"
    status_code = 409


class IncompleteReviewError(SigningError):
    code = "incomplete_review"
    status_code = 409


class IdentityMismatchError(SigningError):
    code = "identity_mismatch"
    status_code = 403


class ValidationFailure(SigningError):
    code = "validation_failure"
    status_code = 422


class ConcurrencyConflict(SigningError):
    code = "concurrency_conflict"
    status_code = 409


class StorageFailure(SigningError):
    """Persistence was unavailable. The only kind a caller may retry."""
    code = "storage_failure"
    status_code = 503
