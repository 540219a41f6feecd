"""Error taxonomy shared by services and routers.

Every error carries the HTTP status it maps to; the application turns them
into flat ``{"error": message}`` bodies.
"""


class OneflowError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(OneflowError):
    status_code = 400


class AuthError(OneflowError):
    status_code = 401


class AuthorizationError(OneflowError):
    status_code = 403


class NotFoundError(OneflowError):
    status_code = 404


class ConflictError(OneflowError):
    status_code = 400


class InsufficientFundsError(OneflowError):
    status_code = 400


class InternalError(OneflowError):
    status_code = 500
