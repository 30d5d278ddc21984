"""
Main FastAPI application (entrypoint).

Responsibilities:
- Wire API routers (student / operator / catalog)
- Register centralized exception handlers (transport errors -> error envelope)
- Provide middleware: request-id logging
- Add health / readiness endpoints
- Create DB tables on startup when configured (dev convenience; use Alembic in prod)
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
import uvicorn

from api import routes_catalog, routes_operator, routes_student
from config.settings import settings
from core.db import Base, engine
from core.exception_handlers import register_exception_handlers
from core.logging import configure_logging, request_logging_middleware
from core.response import ok, error
from infra.rabbitmq_client import rabbitmq_client
from models import db_models  # noqa: F401 ensure models are imported so tables are registered

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    On startup: create DB tables (development convenience). In production use
    Alembic migrations instead. On shutdown: close the RabbitMQ connection.
    """
    if engine is not None and settings.DEBUG:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except Exception as e:
            # Do not crash the process for a missing DB during local dev; log for ops
            logger.warning("DB initialization failed on startup (ok for local dev): %s", e)
    yield
    if settings.RABBITMQ_ENABLED:
        await rabbitmq_client.close()


app = FastAPI(title=settings.API_TITLE, version=settings.API_VERSION, lifespan=lifespan)

# CORS - adjust origins for production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(routes_catalog.router, prefix="/transport", tags=["catalog"])
app.include_router(routes_student.router, prefix="/transport/me", tags=["student"])
app.include_router(routes_operator.router, prefix="/transport/operator", tags=["operator"])

# Register centralized exception handlers
register_exception_handlers(app)

# Add request logging middleware (adds X-Request-ID header and logs)
app.middleware("http")(request_logging_middleware)


# Health endpoints
@app.get("/health")
async def health():
    """Simple health endpoint used by load balancers and orchestrators."""
    return ok({"status": "ok"})

@app.get("/ready")
async def ready():
    """Readiness: check DB connectivity."""
    if engine is None:
        return JSONResponse(status_code=503, content=error(code="db_disabled", message="DB not configured"))
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return ok({"ready": True})
    except Exception:
        logger.exception("Readiness check failed")
        return JSONResponse(status_code=503, content=error(code="db_unreachable", message="DB unavailable"))


if __name__ == "__main__":
    # Run with: python main.py for local dev. For production use uvicorn/gunicorn with workers.
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
