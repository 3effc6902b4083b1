"""Domain errors raised by services and mapped to HTTP responses in main."""


class ClipShareError(Exception):
    """Base class for errors the API layer turns into a JSON response."""

    status_code = 500
    detail = "Internal server error"

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


class NotFoundError(ClipShareError):
    """Missing item, or missing/invalid share token."""

    status_code = 404
    detail = "Not found"


class BadRequestError(ClipShareError):
    """Malformed or incomplete input."""

    status_code = 400
    detail = "Bad request"


class UnauthorizedError(ClipShareError):
    """Wrong share password or missing share credential."""

    status_code = 401
    detail = "Unauthorized"


class StorageError(ClipShareError):
    """Disk or database write failure. Always surfaced as a server error."""

    status_code = 500
    detail = "Storage failure"
