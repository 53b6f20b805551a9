import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from funnel_tracker.api import consent, funnels, tracking, utm
from funnel_tracker.core.config import settings
from funnel_tracker.core.exceptions import (
    DuplicateNameError,
    FunnelTrackerError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Funnel Tracker API", version="1.0.0")

# CORS middleware - default localhost origins plus ALLOWED_ORIGINS_EXTRA
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(request: Request, status_code: int, exc: FunnelTrackerError) -> JSONResponse:
    response = JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code},
    )
    # Keep CORS headers on error responses too
    origin = request.headers.get("origin")
    if origin and origin in settings.get_allowed_origins():
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
    return response


@app.exception_handler(DuplicateNameError)
async def duplicate_name_handler(request: Request, exc: DuplicateNameError):
    return _error_response(request, status.HTTP_409_CONFLICT, exc)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return _error_response(request, status.HTTP_400_BAD_REQUEST, exc)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error_response(request, status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, exc)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log anything unhandled and answer with a generic 500"""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Include routers
app.include_router(funnels.router, prefix="/funnels", tags=["funnels"])
app.include_router(tracking.router, prefix="/track", tags=["tracking"])
app.include_router(consent.router, prefix="/consent", tags=["consent"])
app.include_router(utm.router, prefix="/utm", tags=["utm"])


@app.get("/")
async def root():
    return {"message": "Funnel Tracker API", "version": "1.0.0"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
