import logging

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .errors import TransportError, InvariantViolation
from .response import error as resp_error

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(TransportError)
    async def transport_error_handler(request: Request, exc: TransportError):
        request_id = getattr(request.state, "request_id", None)
        if isinstance(exc, InvariantViolation):
            # programming defect, keep it out of the user-error noise
            logger.critical("Invariant violation on %s %s (request_id=%s): %s",
                            request.method, request.url.path, request_id, exc.message)
        else:
            logger.info("Transport error %s on %s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=resp_error(code=exc.code, message=exc.message, details=exc.details),
        )

    @app.exception_handler(SQLAlchemyError)
    async def persistence_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content=resp_error(code="persistence_error", message="Storage unavailable, retry the operation"),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content=resp_error(code=str(exc.status_code), message=str(exc.detail)))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=resp_error(code="internal_error", message="Internal server error"))
