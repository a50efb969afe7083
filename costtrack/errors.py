"""Error kinds raised by the cost engines.

Each kind carries the HTTP status the app maps it to. Nothing in the core
catches these; they surface to the caller unchanged.
"""


class CostTrackError(Exception):
    kind = 'error'
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {'error': self.kind, 'message': self.message}


class ValidationError(CostTrackError):
    """Malformed or out-of-range input."""
    kind = 'validation_error'
    status_code = 400


class NotFoundError(CostTrackError):
    """Referenced entity does not exist."""
    kind = 'not_found'
    status_code = 404


class DomainError(CostTrackError):
    """Value violates a business rule, e.g. a negative price."""
    kind = 'domain_error'
    status_code = 422


class ConflictError(CostTrackError):
    """Write would break a uniqueness or versioning invariant."""
    kind = 'conflict'
    status_code = 409


class DanglingReferenceError(CostTrackError):
    """A foreign key points at a row that does not exist."""
    kind = 'reference_error'
    status_code = 400
