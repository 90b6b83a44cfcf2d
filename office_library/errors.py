"""Exception types shared by the lending core, the catalog/roster services and the API.

Every error carries a human readable message that is returned to clients
unchanged, and an HTTP status the API layer maps it to.
"""


class LibraryError(Exception):
    """Base class for all library errors."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequestError(LibraryError):
    """The request is malformed or breaks a business rule that reads as a bad request."""

    status_code = 400


class NotFoundError(LibraryError):
    """A directly referenced book or colleague does not exist."""

    status_code = 404


class ConflictError(LibraryError):
    """A state transition is not allowed in the current state."""

    status_code = 400


class StoreError(LibraryError):
    """A store read or write failed."""

    status_code = 500


class StoreUnavailableError(StoreError):
    """The store could not be reached or did not answer in time."""


class ConfigurationError(LibraryError):
    """Required configuration is missing."""

    status_code = 500
