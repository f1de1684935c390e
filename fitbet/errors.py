from __future__ import annotations


class FitbetError(Exception):
    """Base for errors reported back to the acting user. Raised before any mutation."""
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(FitbetError):
    status_code = 422


class PreconditionError(FitbetError):
    status_code = 409


class NotFoundError(FitbetError):
    status_code = 404


class ConflictError(FitbetError):
    status_code = 409


class CollaboratorError(FitbetError):
    """Notifier or store I/O failure."""
    status_code = 502
