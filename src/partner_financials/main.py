"""Partner financials service entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from partner_financials.database import dispose_database, init_database
from partner_financials.errors import PartnerFinanceError
from partner_financials.observability import configure_logging, get_logger
from partner_financials.settings import Settings

logger = get_logger(__name__)
settings = Settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    configure_logging(settings)
    logger.info(
        "partner-financials starting",
        service=settings.service_name,
        report_type=settings.report_type,
        notifier_enabled=settings.notifier_webhook_url is not None,
    )
    init_database(settings)
    yield
    await dispose_database()
    logger.info("partner-financials shutting down")


async def partner_finance_error_handler(request: Request, exc: PartnerFinanceError) -> JSONResponse:
    """Render engine errors as JSON with their HTTP status."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request_failed",
        path=request.url.path,
        error_code=exc.error_code,
        status_code=exc.status_code,
        message=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    """Build the FastAPI application with routes and error handling."""
    application = FastAPI(title=settings.service_name, version="0.1.0", lifespan=lifespan)
    application.add_exception_handler(PartnerFinanceError, partner_finance_error_handler)

    @application.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.service_name}

    from partner_financials.api.router import router

    application.include_router(router, prefix="/api/v1")
    return application


app = create_app()
