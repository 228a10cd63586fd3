"""Maps domain errors to structured JSON responses."""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import structlog
from ..errors import LedgerTimeout, PresenceError
from ..middleware import get_correlation_id

log = structlog.get_logger()


async def presence_error_handler(request: Request, exc: PresenceError) -> JSONResponse:
    content = exc.to_dict()
    content["correlation_id"] = get_correlation_id()

    if exc.status_code >= 500:
        log.error("request.failed", error=exc.code, message=exc.message, path=request.url.path)
    else:
        log.info("request.rejected", error=exc.code, path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content=content)


async def pending_handler(request: Request, exc: LedgerTimeout) -> JSONResponse:
    # Not a failure: the transaction may still become final
    log.warning("request.pending", tx_hash=exc.tx_hash, path=request.url.path)
    return JSONResponse(
        status_code=202,
        content={
            "status": "pending",
            "message": "The ledger has not confirmed this transaction yet",
            "transaction_hash": exc.tx_hash,
            "retryable": False,
            "correlation_id": get_correlation_id(),
        },
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    log.info("request.invalid", path=request.url.path, errors=len(exc.errors()))
    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": "Request failed validation",
            "retryable": False,
            "detail": jsonable_errors(exc),
            "correlation_id": get_correlation_id(),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(LedgerTimeout, pending_handler)
    app.add_exception_handler(PresenceError, presence_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
