"""Error taxonomy for ledger operations.

Every error is caught at the route that started the user action and turned
into a non-fatal HTTP response; nothing here is retried automatically.
"""


class LedgerError(Exception):
    """Base class for all ledger failures."""


class ExpenseValidationError(LedgerError, ValueError):
    """User input is missing or unparseable. Raised before any store call."""


class AuthContextMissing(ExpenseValidationError):
    """No active session, so there is no owner to scope the request to."""

    def __init__(self, message: str = "No active user session."):
        super().__init__(message)


class RetrievalError(LedgerError, ConnectionError):
    """Listing the owner's records failed."""


class WriteError(LedgerError, ConnectionError):
    """A create, update, delete or settlement could not be written."""


class NotFoundError(LedgerError, LookupError):
    """The record does not exist or belongs to another owner."""
