"""
Talbiyah Curriculum Progress

FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Type

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from talbiyah.api.middleware.request_id import RequestIdMiddleware
from talbiyah.api.v1 import router as api_v1_router
from talbiyah.config import get_settings
from talbiyah.data.change_feed import ChangeFeed
from talbiyah.database import close_db, init_db
from talbiyah.engines.progress.hierarchy_store import HierarchyCache
from talbiyah.errors import (
    CurriculumUnsupportedError,
    DataInvariantError,
    InvalidTransitionError,
    NotFoundError,
    OperationInProgressError,
    PersistenceError,
    ProgressEngineError,
)
from talbiyah.logging_config import configure_logging, get_logger
from talbiyah.schemas.common import ErrorResponse, HealthResponse

settings = get_settings()
logger = get_logger(__name__)

ERROR_STATUS: Dict[Type[ProgressEngineError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    OperationInProgressError: status.HTTP_409_CONFLICT,
    DataInvariantError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PersistenceError: status.HTTP_502_BAD_GATEWAY,
    CurriculumUnsupportedError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan handler.

    Runs startup and shutdown tasks.
    """
    configure_logging(
        log_level=settings.log_level,
        environment=settings.environment,
        debug=settings.debug,
    )

    logger.info("Starting %s v%s", settings.project_name, settings.version)
    await init_db()
    logger.info("Database initialized")
    app.state.change_feed = ChangeFeed()
    app.state.hierarchy_cache = HierarchyCache()

    yield

    logger.info("Shutting down...")
    app.state.change_feed.close()
    await close_db()
    logger.info("Database connections closed")


app = FastAPI(
    title=settings.project_name,
    description="""
    Talbiyah Curriculum Progress

    Tracks students through the Quran and Arabic curriculum.

    ## Features

    - **Curriculum**: Subject -> Phase -> Stage -> Milestone with phase unlocking at 80%
    - **Verification**: Students submit milestones, teachers verify or send them back
    - **Surahs**: Understanding, Fluency and Memorization counters per surah
    - **Overview**: Lesson hours, weekly streak, weekly chart and progress history
    """,
    version=settings.version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# add_middleware stacks innermost-first, so the last one added is outermost
_cors_origins = [
    "http://localhost:3000",
    "http://localhost:5173",  # Vite default
    "http://127.0.0.1:3000",
]
if not (settings.debug or settings.environment == "development"):
    _cors_origins = ["https://talbiyah.ai"] + _cors_origins

app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _cors_headers(request: Request) -> dict:
    """CORS headers for error responses (500s often bypass CORS middleware)."""
    origin = request.headers.get("origin") or ""
    allow_origin = origin if origin in _cors_origins else _cors_origins[0]
    return {
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": "*",
        "Access-Control-Allow-Headers": "*",
    }


def _error_headers(request: Request) -> dict:
    headers = _cors_headers(request)
    req_id = getattr(request.state, "request_id", None)
    if req_id:
        headers["X-Request-ID"] = req_id
    return headers


@app.exception_handler(ProgressEngineError)
async def engine_exception_handler(request: Request, exc: ProgressEngineError):
    """Map engine errors to HTTP status codes."""
    status_code = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= 500:
        logger.error("Engine error: %s", exc.message, extra={"code": exc.code, "details": exc.details})
    else:
        logger.info("Request refused: %s", exc.message, extra={"code": exc.code})
    content = ErrorResponse(detail=exc.message, code=exc.code).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=content, headers=_error_headers(request))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Ensure 401/404 etc. responses have CORS headers."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=_error_headers(request),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
):
    """Handle request validation errors."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })
    content = {"detail": "Validation error", "errors": errors}
    req_id = getattr(request.state, "request_id", None)
    if req_id:
        content["request_id"] = req_id
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=content,
        headers=_error_headers(request),
    )


@app.exception_handler(Exception)
async def general_exception_handler(
    request: Request,
    exc: Exception,
):
    """Handle unexpected exceptions."""
    logger.exception("Unhandled exception: %s", exc)
    req_id = getattr(request.state, "request_id", None)
    if settings.debug:
        content = {
            "detail": str(exc),
            "type": type(exc).__name__,
            "request_id": req_id,
        }
    else:
        content = {"detail": "Internal server error", "request_id": req_id}
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=content,
        headers=_error_headers(request),
    )


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Check application health."""
    return HealthResponse(
        status="ok",
        version=settings.version,
        database="connected",
        curriculum_enabled=settings.curriculum_enabled,
    )


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.project_name,
        "version": settings.version,
        "docs": "/docs" if settings.debug else "disabled",
        "api": {
            "v1": settings.api_v1_prefix,
        },
    }


app.include_router(
    api_v1_router,
    prefix=settings.api_v1_prefix,
)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "talbiyah.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
