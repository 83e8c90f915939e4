import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from contact_service import identify as identify_contact
from db_models import ErrorResponse, FinalResponse, IdentifyRequest
from db_setup import init_db
from exceptions import (
    IdentityReconciliationError,
    InvariantViolationError,
    StoreContentionError,
    StoreUnavailableError,
)
from logging_config import get_logger, request_id_var, setup_logging
from settings import settings

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    logger.info("Contact ledger ready", extra={"database_path": settings.database_path})
    yield


app = FastAPI(
    title=settings.service_name,
    version="1.0.0",
    lifespan=lifespan,
)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers["X-Request-ID"] = request_id
    return response


def _error(status_code: int, error: str, message: str = None, details=None) -> JSONResponse:
    body = ErrorResponse(error=error, message=message, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return _error(400, "Invalid request body", details=details)


@app.exception_handler(IdentityReconciliationError)
async def ledger_exception_handler(request: Request, exc: IdentityReconciliationError):
    if isinstance(exc, (StoreContentionError, StoreUnavailableError)):
        logger.warning("Contact store unavailable: %s", exc)
        return _error(503, "Service unavailable", "The contact store is temporarily unavailable")
    if isinstance(exc, InvariantViolationError):
        logger.error("Contact ledger invariant violated: %s", exc)
    else:
        logger.exception("Contact ledger failure", exc_info=exc)
    return _error(500, "Internal server error", "An error occurred while processing the request")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Error in %s %s", request.method, request.url.path, exc_info=exc)
    return _error(500, "Internal server error", "An error occurred while processing the request")


@app.get("/")
async def root():
    return {"message": f"{settings.service_name} is up"}


@app.get("/health")
async def health():
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.service_name,
    }


@app.post("/identify", response_model=FinalResponse)
def identify(request: IdentifyRequest):
    contact = identify_contact(request.email, request.phoneNumber)
    return FinalResponse(contact=contact)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
