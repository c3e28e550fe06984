"""FastAPI application entrypoint for LendingDesk.

Wires logging, CORS, request logging, the error taxonomy handlers and the
API router.
"""
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from lendingdesk import __version__
from lendingdesk.api.routes import router
from lendingdesk.core.config import settings
from lendingdesk.core.errors import AuthenticationRequired, LendingDeskError, StorageFault
from lendingdesk.core.logging import get_logger, setup_logging

# Initialize structured logging
log_format = settings.environment == "production"
setup_logging(level="DEBUG" if settings.debug else settings.log_level, json_format=log_format)
logger = get_logger(__name__)

APP_VERSION = __version__
APP_NAME = "LendingDesk"

app = FastAPI(
    title=APP_NAME,
    description="Lending catalog with an auditable issue/return ledger",
    version=APP_VERSION,
    debug=settings.debug,
    docs_url="/docs" if settings.environment != "production" else None,  # Disable in prod
    redoc_url="/redoc" if settings.environment != "production" else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request with timing and status code."""
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    request_logger = get_logger(__name__, {"request_id": request_id})

    start_time = time.time()

    request_logger.info(
        f"Request started: {request.method} {request.url.path}",
        extra={
            "method": request.method,
            "endpoint": request.url.path,
        }
    )

    try:
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000

        request_logger.info(
            f"Request completed: {request.method} {request.url.path}",
            extra={
                "method": request.method,
                "endpoint": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            }
        )

        response.headers["X-Request-ID"] = request_id
        return response

    except Exception as e:
        duration_ms = (time.time() - start_time) * 1000
        request_logger.error(
            f"Request failed: {request.method} {request.url.path}",
            extra={
                "method": request.method,
                "endpoint": request.url.path,
                "duration_ms": round(duration_ms, 2),
                "error_type": type(e).__name__,
            },
            exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "request_id": request_id}
        )


@app.exception_handler(AuthenticationRequired)
async def authentication_required_handler(request: Request, exc: AuthenticationRequired):
    """Send callers without a valid session to the login page."""
    logger.info(
        f"Redirecting to login: {exc.reason}",
        extra={"endpoint": request.url.path, "request_id": getattr(request.state, "request_id", None)},
    )
    return RedirectResponse("/login", status_code=303)


@app.exception_handler(StorageFault)
async def storage_fault_handler(request: Request, exc: StorageFault):
    """Generic failure; the caller may retry the whole request."""
    request_id = getattr(request.state, "request_id", None)
    logger.error(
        f"Storage fault on {request.method} {request.url.path}: {exc.detail}",
        extra={"request_id": request_id, "error_type": "StorageFault"},
    )
    content = exc.to_dict()
    content["request_id"] = request_id
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(LendingDeskError)
async def lending_error_handler(request: Request, exc: LendingDeskError):
    """Expected rejections: specific message, nothing was changed."""
    logger.info(
        f"Request rejected ({exc.code}): {exc.detail}",
        extra={
            "request_id": getattr(request.state, "request_id", None),
            "user_id": getattr(request.state, "user_id", None),
            "endpoint": request.url.path,
        },
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
async def startup_event():
    """Run on application startup."""
    logger.info("Application starting up", extra={"version": APP_VERSION})


@app.on_event("shutdown")
async def shutdown_event():
    """Run on application shutdown."""
    logger.info("Application shutting down")


app.include_router(router)


@app.get("/health")
def health_check():
    """Liveness probe. Returns 200 if the process is serving."""
    return {
        "status": "healthy",
        "version": APP_VERSION,
        "checks": {
            "api": "ok",
            "storage_backend": settings.storage_backend,
        }
    }


@app.get("/ready")
async def readiness_check():
    """Readiness probe: verifies the store is reachable."""
    from lendingdesk.infrastructure.store import get_store

    checks = {"storage_backend": settings.storage_backend}
    try:
        checks["store"] = "ok" if get_store().ping() else "error"
    except StorageFault:
        checks["store"] = "error"

    return {
        "status": "ready" if checks["store"] == "ok" else "degraded",
        "checks": checks
    }
