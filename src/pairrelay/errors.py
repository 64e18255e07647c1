"""Base exceptions for the relay.

Every error carries the HTTP status it maps to, so the server can turn
it into a ``{"error": ...}`` response without a lookup table.
"""


class RelayError(Exception):
    """Base exception for all relay errors."""

    status: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RelayError):
    """Missing or malformed request fields."""

    status = 400


class NotFoundError(RelayError):
    """Unknown pair or pairing code."""

    status = 404


class NotAuthorizedError(RelayError):
    """Device is not a member of the pair, or not the code owner."""

    status = 403


class ConflictError(RelayError):
    """Device already paired, or attempted to pair with itself."""

    status = 400


class ExhaustedError(RelayError):
    """Could not allocate a unique pairing code."""

    status = 500
