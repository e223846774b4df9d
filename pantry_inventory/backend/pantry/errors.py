"""User-facing failures raised by the pantry workflows.

Every error carries the message shown to the user; the HTTP layer turns it
into ``{"detail": message}`` with ``status_code``.
"""


class PantryError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationFailure(PantryError):
    """Bad credentials or a missing/expired session."""
    status_code = 401


class AuthorizationFailure(PantryError):
    """Unapproved account or a non-admin reaching an admin action."""
    status_code = 403


class ValidationFailure(PantryError):
    status_code = 400


class StockConflict(ValidationFailure):
    """Stock changed between reading the item and decrementing it."""
    status_code = 409


class NotFound(PantryError):
    status_code = 404


class BackendFailure(PantryError):
    status_code = 502
