"""
Error taxonomy shared by the stores and routers.
Every error carries the HTTP status it is rendered with.
"""

import logging
from typing import Any, Optional

from easylms.courses import config

logger = logging.getLogger(__name__)


class LMSError(Exception):
    status_code = 500

    def __init__(self, message: str, error: Any = None):
        super().__init__(message)
        self.message = message
        self.error = error

    def to_response(self) -> dict:
        body = {"message": self.message}
        if self.error is not None:
            body["error"] = self.error
        return body


class ValidationError(LMSError):
    status_code = 400


class AuthenticationError(LMSError):
    status_code = 401


class ForbiddenError(LMSError):
    status_code = 403


class NotFoundError(LMSError):
    status_code = 404


class ConflictError(LMSError):
    status_code = 409


class UnexpectedError(LMSError):
    status_code = 500


def unexpected(message: str, exc: Exception) -> UnexpectedError:
    """Log an unhandled failure and wrap it; detail only leaks in DEBUG."""
    logger.exception("%s: %s", message, exc)
    return UnexpectedError(message, str(exc) if config.DEBUG else None)
