from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from pydantic import ValidationError

from agency_crm.api.routes import router as api_router
from agency_crm.core.config import get_settings
from agency_crm.core.context import RequestContextMiddleware
from agency_crm.crm.errors import validation_error_response
from agency_crm.logging import configure_logging
from agency_crm.middleware.correlation_id import CorrelationIdMiddleware
from agency_crm.middleware.request_logging import RequestLoggingMiddleware
from agency_crm.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("agency_crm.lifecycle")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("system.started", extra={"endpoint": settings.app_name})
    yield
    logger.info("system.stopped", extra={"endpoint": settings.app_name})


settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(
    RequestContextMiddleware,
    default_locale=settings.default_locale,
    default_currency=settings.default_currency,
)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return validation_error_response(request, exc)


@app.exception_handler(ValidationError)
async def model_validation_handler(request: Request, exc: ValidationError):
    return validation_error_response(request, exc)


if settings.otel_enabled:
    setup_otel("api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
