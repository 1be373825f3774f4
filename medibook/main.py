from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import logging

from .api.v1.admin import router as admin_router
from .api.v1.appointments import router as appointments_router
from .api.v1.auth import router as auth_router
from .api.v1.calendars import router as calendars_router
from .api.v1.doctors import router as doctors_router
from .api.v1.notifications import router as notifications_router
from .api.v1.payments import router as payments_router
from .core.config import settings
from .core.database import SessionLocal, init_db
from .jobs.reminder_scheduler import ReminderScheduler
from .services.notification_service import create_dispatcher
from .services.reminder_service import ReminderService

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Medical appointment booking: availability, lifecycle and reminders",
    openapi_url="/api/v1/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Middleware setup
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Only add TrustedHostMiddleware outside of tests
if not settings.TESTING:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=["localhost", "127.0.0.1", "*.localhost", "testserver"]
    )

# Request logging and timing
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)

    logger.info(
        "%s %s - Status: %s - Time: %.4fs",
        request.method, request.url.path, response.status_code, process_time
    )

    return response

# Exception handlers
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "message": "Validation failed", "errors": errors},
    )

@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    logger.error("Internal server error on %s: %s", request.url.path, exc, exc_info=True)
    content = {"success": False, "message": "An unexpected error occurred"}
    if not settings.is_production:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)

# Include routers
app.include_router(auth_router, prefix="/api/v1")
app.include_router(appointments_router, prefix="/api/v1")
app.include_router(calendars_router, prefix="/api/v1")
app.include_router(doctors_router, prefix="/api/v1")
app.include_router(notifications_router, prefix="/api/v1")
app.include_router(payments_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")

# Startup and shutdown events
@app.on_event("startup")
async def startup_event():
    """Initialize database and background jobs."""
    logger.info("Starting %s...", settings.APP_NAME)

    db_url = settings.get_database_url
    db_type = "PostgreSQL" if "postgresql" in db_url else "SQLite" if "sqlite" in db_url else "Unknown"
    logger.info("Using %s database", db_type)

    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error("Failed to initialize database: %s", e)
        raise

    scheduler = ReminderScheduler(
        ReminderService(SessionLocal, create_dispatcher()),
        timezone_name=settings.SCHEDULER_TIMEZONE,
        enabled=settings.SCHEDULER_ENABLED and not settings.TESTING,
    )
    scheduler.start()
    app.state.reminder_scheduler = scheduler

    logger.info("Application startup complete")

@app.on_event("shutdown")
async def shutdown_event():
    """Stop background jobs."""
    logger.info("Shutting down %s...", settings.APP_NAME)
    scheduler = getattr(app.state, "reminder_scheduler", None)
    if scheduler:
        scheduler.stop()

# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    scheduler = getattr(app.state, "reminder_scheduler", None)
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.VERSION,
        "scheduler": {
            "running": bool(scheduler and scheduler.is_running),
            "jobs": scheduler.get_jobs_info() if scheduler else [],
        },
    }

# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "message": f"Welcome to the {settings.APP_NAME} API",
        "version": settings.VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health"
    }

# API Info endpoint
@app.get("/api/v1/info")
async def api_info():
    """API information endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.VERSION,
        "endpoints": {
            "authentication": "/api/v1/auth",
            "appointments": "/api/v1/appointments",
            "calendars": "/api/v1/calendars",
            "doctors": "/api/v1/doctors",
            "notifications": "/api/v1/notifications",
            "payments": "/api/v1/payments",
            "admin": "/api/v1/admin",
            "docs": "/docs",
            "openapi": "/api/v1/openapi.json"
        }
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "medibook.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
