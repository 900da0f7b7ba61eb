import logging
import os
import time

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, TimeoutError as SQLAlchemyTimeoutError

from src.api.routes import admin, routes, webhooks
from src.application.hold_sweeper import hold_sweeper
from src.config import get_settings
from src.infrastructure.db.session import engine
from src.infrastructure.db.models import Base

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(title="Booking Consistency Engine")

app.include_router(routes.router)
app.include_router(webhooks.router)
app.include_router(admin.router)
logger = logging.getLogger(__name__)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": {
                "error": "ValidationError",
                "message": "Invalid request body",
                "errors": jsonable_encoder(exc.errors()),
            }
        },
    )


@app.exception_handler(OperationalError)
@app.exception_handler(SQLAlchemyTimeoutError)
async def store_unavailable_handler(request: Request, exc: Exception):
    logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Booking store unavailable. Please retry."},
    )


def _wait_for_db() -> None:
    # Handles the common case where API starts before Postgres is ready.
    max_retries = int(os.getenv("DB_CONNECT_MAX_RETRIES", "30"))
    retry_delay_seconds = float(os.getenv("DB_CONNECT_RETRY_DELAY", "1.5"))

    for attempt in range(1, max_retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database is reachable.")
            return
        except OperationalError:
            if attempt == max_retries:
                logger.exception(
                    "Database not reachable after %s attempts. Check DATABASE_URL.",
                    max_retries,
                )
                raise
            logger.warning(
                "Database not ready (attempt %s/%s). Retrying in %.1f seconds...",
                attempt,
                max_retries,
                retry_delay_seconds,
            )
            time.sleep(retry_delay_seconds)


@app.on_event("startup")
async def on_startup() -> None:
    _wait_for_db()
    Base.metadata.create_all(bind=engine)
    await hold_sweeper.start()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await hold_sweeper.stop()
