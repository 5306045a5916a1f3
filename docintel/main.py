# main.py
"""Application entry point: schema setup, error envelope and routes"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from docintel.api.endpoints import router
from docintel.api.schemas import Envelope
from docintel.config import settings
from docintel.core.errors import (
    AllProvidersUnavailable, DuplicateCollection, DuplicateDocument, EmbeddingModelMismatch,
    GenerationFailed, InvalidConfiguration, IsolationViolation, NotFound, RAGError,
)
from docintel.database.session import init_models
from docintel.services.logger_config import setup_logging

setup_logging()
logger = logging.getLogger(settings.LOGGER_NAME)

# First match wins; order subclasses before their bases if any are added.
ERROR_STATUS = [
    (InvalidConfiguration, 422),
    (NotFound, 404),
    (IsolationViolation, 403),
    (EmbeddingModelMismatch, 409),
    (DuplicateDocument, 409),
    (DuplicateCollection, 409),
    (AllProvidersUnavailable, 503),
    (GenerationFailed, 502),
]


def status_for(error: RAGError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


def _envelope_response(status_code: int, error: str, data=None) -> JSONResponse:
    body = Envelope(success=False, data=data, error=error)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting application...")
    await init_models()
    logger.info("Database initialized")
    yield
    logger.info("Application shutdown complete")


app = FastAPI(
    title=settings.APP_TITLE,
    version=settings.APP_VERSION,
    lifespan=lifespan
)


@app.exception_handler(RAGError)
async def rag_error_handler(request: Request, exc: RAGError) -> JSONResponse:
    status_code = status_for(exc)
    data = exc.data
    if isinstance(exc, GenerationFailed) and exc.user_message_id:
        data = {**(data or {}), "user_message_id": exc.user_message_id}
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return _envelope_response(status_code, str(exc), data)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _envelope_response(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return _envelope_response(422, f"[INVALID_CONFIGURATION] {details}")


app.include_router(router)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )
