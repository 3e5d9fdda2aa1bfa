"""Errors raised by API handlers, each carrying its HTTP status."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any


class ApiError(Exception):
    """Base error for API handlers, rendered as a JSON error body."""

    status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_response(self) -> tuple[dict[str, Any], int]:
        """Return the JSON body and status code for this error."""
        return {"error": self.message}, int(self.status)


class NotFoundError(ApiError):
    """The requested resource does not exist."""

    status = HTTPStatus.NOT_FOUND


class BadRequestError(ApiError):
    """The request was malformed or invalid."""

    status = HTTPStatus.BAD_REQUEST


class UnauthorizedError(ApiError):
    """The request lacked valid credentials."""

    status = HTTPStatus.UNAUTHORIZED

    def __init__(self) -> None:
        super().__init__("Unauthorized")


class InternalError(ApiError):
    """An unexpected failure on the server side."""

    status = HTTPStatus.INTERNAL_SERVER_ERROR