class DomainError(ValueError):
    """Base for errors raised by the booking services.

    `kind` is a stable machine-readable code surfaced to callers; `status_code`
    is the HTTP status a route should answer with.
    """

    status_code = 400

    def __init__(self, kind: str, message: str = "", **details):
        super().__init__(message or kind)
        self.kind = kind
        self.message = message or kind
        self.details = details

    def to_dict(self) -> dict:
        out = {"error": self.kind, "message": self.message}
        if self.details:
            out.update(self.details)
        return out


class ValidationFailed(DomainError):
    """Malformed or unacceptable input. Nothing was persisted."""
    status_code = 400


class NotFound(DomainError):
    status_code = 404


class Forbidden(DomainError):
    status_code = 403


class Conflict(DomainError):
    """Input was fine but shared state disagrees (sold out, duplicate reference, lost race)."""
    status_code = 409


class InvariantViolation(DomainError):
    """Would break a storage invariant; the unit of work is aborted before commit."""
    status_code = 500


class Unavailable(DomainError):
    """An external collaborator failed or timed out; local state is left consistent."""
    status_code = 502
