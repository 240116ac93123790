"""
Error taxonomy shared by every service.

Services raise a single tagged error, ``AppError``, carrying an ``ErrorKind``.
The HTTP layer maps the kind to a status code in one place.
"""
from enum import Enum


class ErrorKind(str, Enum):
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    DUPLICATE_RESOURCE = "DUPLICATE_RESOURCE"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    INTERNAL_ERROR = "INTERNAL_ERROR"


STATUS_CODES = {
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.RESOURCE_NOT_FOUND: 404,
    ErrorKind.DUPLICATE_RESOURCE: 409,
    ErrorKind.INSUFFICIENT_STOCK: 409,
    ErrorKind.INTERNAL_ERROR: 500,
}

INTERNAL_ERROR_MESSAGE = "Something went wrong. Please try again later."


class AppError(Exception):
    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    def __repr__(self):
        return f"AppError({self.kind.value}, {self.message!r})"


def bad_request(message: str) -> AppError:
    return AppError(ErrorKind.BAD_REQUEST, message)


def unauthorized(message: str = "Authentication required") -> AppError:
    return AppError(ErrorKind.UNAUTHORIZED, message)


def forbidden(message: str) -> AppError:
    return AppError(ErrorKind.FORBIDDEN, message)


def not_found(message: str) -> AppError:
    return AppError(ErrorKind.RESOURCE_NOT_FOUND, message)


def duplicate(message: str) -> AppError:
    return AppError(ErrorKind.DUPLICATE_RESOURCE, message)


def insufficient_stock(message: str) -> AppError:
    return AppError(ErrorKind.INSUFFICIENT_STOCK, message)
