from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from jobboard.api.routes import router as api_router, get_session
from jobboard.config.settings import get_settings
from jobboard.models.results import InvariantViolation
from jobboard.storage.broadcast import RedisEventSubscriber
from jobboard.storage.database import SessionLocal, init_db
from jobboard.utils.logging_config import setup_logging


# Setup logging
setup_logging()
logger = logging.getLogger(__name__)
settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    description="Assignment and attachment rule engine for the job scheduling board",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_subscriber = None


@app.exception_handler(InvariantViolation)
async def invariant_violation_handler(request: Request, exc: InvariantViolation):
    logger.warning(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=404, content={"detail": str(exc)})


# Initialize database and board session on startup
@app.on_event("startup")
async def startup_event():
    global _subscriber
    logger.info(f"Starting {settings.app_name}...")
    init_db()
    logger.info("Database initialized")

    db = SessionLocal()
    try:
        session = get_session(db)
    finally:
        db.close()

    if settings.broadcast_enabled:
        _subscriber = RedisEventSubscriber(session)
        _subscriber.start()
    logger.info(f"Max attachment depth: {settings.max_attachment_depth}")


@app.on_event("shutdown")
async def shutdown_event():
    if _subscriber is not None:
        _subscriber.stop()
    logger.info(f"Shutting down {settings.app_name}...")

app.include_router(api_router, prefix="/api/v1", tags=["board"])


@app.get("/health", tags=["health"])
def health_check():
    """Health check endpoint for monitoring and load balancers."""
    return {"status": "ok", "app": settings.app_name, "version": "1.0.0"}
