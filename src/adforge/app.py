"""FastAPI application factory."""

# Import timezone enforcement (sets TZ=UTC)
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from adforge.api.errors import register_exception_handlers
from adforge.api.routes import credits, internal, jobs, webhooks
from adforge.core import timezone  # noqa: F401
from adforge.core.config import Settings, configure_logging
from adforge.core.database import setup_db_session
from adforge.services.billing.consumer import BillingEventConsumer, StripeSubscriptionLookup
from adforge.services.billing.plans import PlanCatalog
from adforge.services.dispatcher import JobDispatcher
from adforge.services.generation.replicate_client import ReplicateGenerator
from adforge.services.generation.request_builder import GenerationRequestBuilder
from adforge.services.ledger import CreditLedger
from adforge.services.materializer import ResultMaterializer
from adforge.services.storage.s3_client import S3Storage
from adforge.services.trigger import WorkerTrigger
from adforge.uow import create_uow_factory

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, initialize database session factory, build services
    - Shutdown: Close the worker trigger's HTTP client
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    storage = S3Storage(
        endpoint_url=settings.s3_endpoint_url,
        region_name=settings.s3_region,
        access_key_id=settings.aws_access_key_id,
        secret_access_key=settings.aws_secret_access_key,
    )
    trigger_client = httpx.AsyncClient(timeout=settings.trigger_timeout_seconds)
    ledger = CreditLedger()

    # Store in app.state for access in routes
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.request_builder = GenerationRequestBuilder(
        storage, settings.uploads_bucket, settings.signed_url_ttl_seconds
    )
    app.state.generator = ReplicateGenerator(
        api_token=settings.replicate_api_token,
        openai_model=settings.replicate_openai_model,
        gemini_model=settings.replicate_gemini_model,
        seedream_model=settings.replicate_seedream_model,
        seedance_model=settings.replicate_seedance_model,
    )
    app.state.materializer = ResultMaterializer(
        storage, settings.results_bucket, timeout=settings.download_timeout_seconds
    )
    app.state.dispatcher = JobDispatcher(
        uow_factory,
        WorkerTrigger(settings.worker_base_url, settings.worker_service_token, trigger_client),
        ledger=ledger,
        free_daily_limit=settings.free_daily_job_limit,
        free_total_limit=settings.free_total_job_limit,
    )
    app.state.billing_consumer = BillingEventConsumer(
        uow_factory,
        PlanCatalog.from_settings(settings),
        StripeSubscriptionLookup(settings.stripe_secret_key),
        ledger=ledger,
    )

    logger.info("application.startup", db_url=settings.database_url.split("@")[-1])

    yield

    logger.info("application.shutdown")
    await trigger_client.aclose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="AdForge Backend API",
        description="Generation job orchestration and credit ledger",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(jobs.router)  # prefix="/api/jobs" in definition
    app.include_router(credits.router)  # prefix="/api/credits" in definition
    app.include_router(internal.router)  # prefix="/internal/jobs" in definition
    app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
