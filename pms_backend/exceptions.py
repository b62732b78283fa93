"""
Service-level exceptions.

Every error a flow or protocol can raise carries the HTTP status the route
layer should answer with, so route handlers only translate, never decide.
"""
from typing import Optional


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidInputError(ServiceError):
    """Missing or malformed request fields."""

    status_code = 400


class AccountNotFoundError(ServiceError):
    status_code = 404

    def __init__(self, message: str = "Target user not found"):
        super().__init__(message)


class CodeVerificationError(ServiceError):
    """Base for the three ways a presented code can be rejected."""

    status_code = 400


class CodeNotFoundError(CodeVerificationError):
    pass


class CodeExpiredError(CodeVerificationError):
    pass


class CodeMismatchError(CodeVerificationError):
    pass


class ForbiddenError(ServiceError):
    status_code = 403


class UnauthorizedError(ServiceError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class ConflictError(ServiceError):
    status_code = 409


class DispatchFailedError(ServiceError):
    """The code was stored but the notification could not be sent."""

    status_code = 500


class PartialFailureError(ServiceError):
    """
    A multi-step mutation stopped after external effects were applied.

    ``step`` names the step that failed; earlier steps are left in place.
    """

    status_code = 500

    def __init__(self, step: str, cause: Exception):
        super().__init__(f"{step} failed: {cause}")
        self.step = step
        self.cause = cause
