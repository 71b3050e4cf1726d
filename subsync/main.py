import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException
from dotenv import load_dotenv

# Load env from the project .env (tests configure settings explicitly)
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from subsync.core.config import settings, validate_config
from subsync.core.logging import configure_logging
from subsync.core.middleware.request_id import RequestIdMiddleware
from subsync.core.middleware.metrics import MetricsMiddleware
from subsync.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from subsync.api import health, metrics, realtime, subscription

configure_logging(settings.ENV, settings.LOG_LEVEL)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("subsync")
    logger.info("Starting subscription webhook service...")
    try:
        yield
    finally:
        logger.info("Stopping subscription webhook service...")


app = FastAPI(title="SubSync - subscription webhooks", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(subscription.router)
app.include_router(realtime.router, tags=["realtime"])
app.include_router(health.root_router, tags=["health"])
app.include_router(metrics.router, tags=["metrics"])
