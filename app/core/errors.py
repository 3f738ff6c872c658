"""
Relay error types.

REST handlers signal failures with FastAPI's HTTPException; relay handlers
raise RelayError, which is emitted back to the offending Socket.IO connection
as a ``relay_error`` event instead of being broadcast.
"""


class RelayErrorCode:
    INVALID_MESSAGE = "INVALID_MESSAGE"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"


class RelayError(Exception):
    """Rejected relay event; ``code`` is one of the RelayErrorCode values."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")
