import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

# Load env from the working directory's .env (skipped under pytest)
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from fitai.core.config import settings, validate_config
from fitai.core.logging import configure_logging
from fitai.core.middleware.request_id import RequestIdMiddleware
from fitai.core.validation import validate_env
from fitai.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    validation_error_handler,
    unhandled_exception_handler,
)
from fitai.core.database import create_all_tables
from fitai.api import admin, billing, health, mealplan, profile, webhooks

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("fitai")
    logger.info("Starting FitAI backend...")
    try:
        create_all_tables()
    except Exception as e:
        # Readiness probe reports the database; keep liveness up
        logger.error(f"Table bootstrap failed: {e}")
    try:
        yield
    finally:
        logger.info("Stopping FitAI backend...")


app = FastAPI(title="FitAI - Backend", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(profile.router)
app.include_router(mealplan.router)
app.include_router(webhooks.router)
app.include_router(billing.router)
app.include_router(admin.router)
app.include_router(health.router)
