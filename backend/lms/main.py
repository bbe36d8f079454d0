"""FastAPI application shell: logging, domain error mapping and health check."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from sqlalchemy import text

from .config import settings
from .database import SessionLocal
from .domain_errors import DomainError
from .responses import build_error_response

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    from .celery_app import register_event_listeners

    register_event_listeners()
    logger.info(f"{settings.APP_NAME} started ({settings.ENV})")
    yield


# Create app
app = FastAPI(
    title="LMS Training Core",
    version="1.0.0",
    description="Enrollment, compliance, role permission and department hierarchy core",
    lifespan=lifespan,
)


async def domain_error_handler(_request: Request, exc: DomainError):
    return build_error_response(exc)


def install_error_handlers(application: FastAPI) -> None:
    application.add_exception_handler(DomainError, domain_error_handler)


install_error_handlers(app)


@app.get("/api/v1/system/health")
def health_check():
    """Health check endpoint."""
    database = "ok"
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check database probe failed: {e}")
        database = "error"
    finally:
        db.close()

    return {
        "status": "ok" if database == "ok" else "degraded",
        "version": "1.0.0",
        "database": database,
    }


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "LMS Training Core API",
        "version": "1.0.0",
        "docs": "/docs"
    }
