"""Intentive calendar web application."""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from intentive.core.config import settings
from intentive.core.database import create_db_and_tables
from intentive.core.errors import ConfigurationError
from intentive.core.scheduler import shutdown_scheduler, start_scheduler
from intentive.core.services import auth_manager, change_feed, identity_client
from intentive.routes import auth, events

# Configure logging
log_dir = Path(settings.log_dir).expanduser()
log_dir.mkdir(parents=True, exist_ok=True)
log_file = log_dir / "latest.log"

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    filename=str(log_file),
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""
    # Startup
    logger.info("Starting Intentive application")
    create_db_and_tables()
    try:
        auth_manager.build_authorization_request()
    except ConfigurationError as e:
        logger.critical(f"Google sign-in is not configured: {e}")
        raise
    start_scheduler(identity_client)
    yield
    # Shutdown
    change_feed.close_all()
    shutdown_scheduler()
    auth_manager.close()
    logger.info("Intentive application shut down")


app = FastAPI(
    title=settings.app_name,
    description="Personal calendar with Google sign-in and Google Calendar sync",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS for external access
origins = (
    ["*"]
    if settings.allowed_origins == "*"
    else [o.strip() for o in settings.allowed_origins.split(",")]
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router)
app.include_router(events.router)


@app.get("/")
async def root(request: Request):
    """Redirect root to today's events."""
    rp = request.scope.get("root_path", "")
    return RedirectResponse(f"{rp}/events")


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "app": settings.app_name}
