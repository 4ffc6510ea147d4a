"""Error types raised by the booking service and their HTTP mapping.

Route handlers and scheduling helpers raise these; only the handlers
registered by :func:`register_exception_handlers` turn them into responses.
Every error body has the shape ``{"error": message, "fields": {...}}`` with
``fields`` present only for validation failures.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ValidationError(ApiError):
    def __init__(self, message: str = 'Validation failed', fields: dict[str, str] | None = None):
        super().__init__(message, status.HTTP_400_BAD_REQUEST)
        self.fields = fields or {}


class AuthError(ApiError):
    def __init__(self, message: str = 'Authentication required'):
        super().__init__(message, status.HTTP_401_UNAUTHORIZED)


class NotFoundError(ApiError):
    def __init__(self, resource: str = 'Resource'):
        super().__init__(f'{resource} not found', status.HTTP_404_NOT_FOUND)


def format_error_response(error: Exception) -> tuple[dict, int]:
    if isinstance(error, ValidationError):
        return {'error': error.message, 'fields': error.fields}, error.status_code

    if isinstance(error, ApiError):
        return {'error': error.message}, error.status_code

    return {'error': 'An unknown error occurred'}, status.HTTP_500_INTERNAL_SERVER_ERROR


def _field_name(location: tuple) -> str:
    # ('body', 'start_time') -> 'start_time'; ('query', 'date') -> 'date'
    parts = [str(part) for part in location if part not in ('body', 'query', 'path')]
    return '.'.join(parts) or 'request'


def request_validation_to_error(exc: RequestValidationError) -> ValidationError:
    fields: dict[str, str] = {}
    for issue in exc.errors():
        name = _field_name(tuple(issue.get('loc', ())))
        if issue.get('type') == 'missing':
            fields.setdefault(name, f'{name} is required')
        else:
            message = str(issue.get('msg', 'Invalid value'))
            fields.setdefault(name, message.removeprefix('Value error, '))
    return ValidationError('Validation failed', fields)


async def _handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    body, status_code = format_error_response(exc)
    return JSONResponse(status_code=status_code, content=body)


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    body, status_code = format_error_response(request_validation_to_error(exc))
    return JSONResponse(status_code=status_code, content=body)


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception('Unhandled error on %s %s', request.method, request.url.path)
    body, status_code = format_error_response(exc)
    return JSONResponse(status_code=status_code, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _handle_api_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(Exception, _handle_unexpected)
