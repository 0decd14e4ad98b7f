# clubhouse/errors.py
from __future__ import annotations

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

LOGIN_PAGE = "/login"


def _wants_html(request: Request) -> bool:
    accept = (request.headers.get("accept") or "").lower()
    # browsers usually send text/html
    return "text/html" in accept


def error_body(detail) -> dict:
    """
    HTTPException.detail -> {"error": ..., **extra}
    A dict detail may carry its own "error" plus extra keys.
    """
    if isinstance(detail, dict):
        body = dict(detail)
        body.setdefault("error", body.pop("message", None) or "Error")
        return body
    return {"error": str(detail) if detail else "Error"}


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Unauthenticated -> send to login page in browser
    if exc.status_code == 401 and _wants_html(request):
        return RedirectResponse(url=LOGIN_PAGE, status_code=303)

    headers = getattr(exc, "headers", None)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.detail), headers=headers)


def _first_error_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    msg = str(errors[0].get("msg") or "Invalid request")
    # pydantic prefixes ValueError messages raised in validators
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    return msg


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": _first_error_message(exc)})


async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("DB ERROR on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Database error"})


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("UNHANDLED ERROR on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def register_exception_handlers(app) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
