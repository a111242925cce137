"""
Error kinds raised by the repositories and turned into HTTP responses by the app.
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message=""):
        super().__init__(message)
        self.message = message


class EntityNotFound(AppError):
    status_code = 404


class Conflict(AppError):
    """The request is well formed but cannot be applied to the current state."""

    status_code = 422


class WriteFailed(AppError):
    """A write that should have touched a row touched none."""

    status_code = 500


class StorageError(AppError):
    status_code = 500

    def __init__(self, message="", cause=None):
        super().__init__(message)
        self.cause = cause


class TransactionError(StorageError):
    pass


class BadRequest(AppError):
    status_code = 400


class Unauthorized(AppError):
    status_code = 401


class Unauthenticated(AppError):
    status_code = 403
