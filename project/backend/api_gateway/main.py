"""
FastAPI application entry point.

Main application setup with CORS, middleware, error mapping and route registration.
"""

import uuid
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from shared.config import settings
from shared.logging import get_logger
from shared.errors import (
    ConflictError,
    InvalidTransitionError,
    MissingScriptError,
    PipelineError,
    PreconditionError,
    RetryableError,
    StaleRunError,
    ValidationError,
    VideoNotFoundError,
)

logger = get_logger(__name__)

# Create FastAPI app
app = FastAPI(
    title="StoryShort Pipeline API",
    description="Asset generation and rendering for narrated short videos",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
    allow_credentials=True,
    max_age=3600
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add unique request ID to each request."""
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    logger.info(
        "Request started",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path
        }
    )

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id

    return response


def _error_response(
    request: Request,
    exc: PipelineError,
    status_code: int,
    code: str,
    retryable: bool = False,
    **extra
) -> JSONResponse:
    content = {
        "error": str(exc),
        "code": exc.code or code,
        "retryable": retryable,
        "request_id": getattr(request.state, "request_id", None)
    }
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Handle validation errors."""
    return _error_response(request, exc, 400, "VALIDATION_ERROR")


@app.exception_handler(VideoNotFoundError)
async def not_found_handler(request: Request, exc: VideoNotFoundError):
    """Handle unknown videos."""
    return _error_response(request, exc, 404, "VIDEO_NOT_FOUND")


@app.exception_handler(MissingScriptError)
async def missing_script_handler(request: Request, exc: MissingScriptError):
    """Handle asset requests without an approved script."""
    return _error_response(request, exc, 422, "MISSING_SCRIPT")


@app.exception_handler(PreconditionError)
async def precondition_error_handler(request: Request, exc: PreconditionError):
    """Handle renders requested before inputs are ready."""
    return _error_response(request, exc, 409, "PRECONDITION_FAILED", missing=exc.missing)


@app.exception_handler(ConflictError)
async def conflict_error_handler(request: Request, exc: ConflictError):
    """Handle a stage that is already running."""
    return _error_response(request, exc, 409, "CONFLICT", retryable=True)


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    """Handle requests the video's status does not allow."""
    return _error_response(request, exc, 409, "INVALID_TRANSITION")


@app.exception_handler(StaleRunError)
async def stale_run_handler(request: Request, exc: StaleRunError):
    """Handle work abandoned because the video was cancelled or superseded."""
    return _error_response(request, exc, 409, "STALE_RUN")


@app.exception_handler(RetryableError)
async def retryable_error_handler(request: Request, exc: RetryableError):
    """Handle retryable errors."""
    return _error_response(request, exc, 503, "RETRYABLE_ERROR", retryable=True)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    """Handle pipeline errors."""
    return _error_response(request, exc, 500, "PIPELINE_ERROR")


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={"request_id": getattr(request.state, "request_id", None)}
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "code": "INTERNAL_ERROR",
            "retryable": False,
            "request_id": getattr(request.state, "request_id", None)
        }
    )


# Register routes
from api_gateway.routes import health, videos

app.include_router(health.router, prefix="/api/v1", tags=["health"])
app.include_router(videos.router, prefix="/api/v1", tags=["videos"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "StoryShort Pipeline API", "version": "1.0.0"}
