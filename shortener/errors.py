class ShortenerError(Exception):
    """Base error; `status_code` is what the HTTP layer answers with."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(ShortenerError):
    status_code = 400


class NotFound(ShortenerError):
    status_code = 404


class ConflictError(ShortenerError):
    """Insert rejected by a unique constraint. Never leaves the service layer."""


class AllocationExhausted(ShortenerError):
    status_code = 500


class StorageUnavailable(ShortenerError):
    status_code = 503
