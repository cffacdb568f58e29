"""pytest fixtures for adforge backend tests.

Provides:
- postgres_container: Session-scoped testcontainer PostgreSQL instance
- utc_timezone: Autouse fixture enforcing UTC timezone
- session: Function-scoped database session with table truncation
- uow_factory: Function-scoped UnitOfWork factory
- make_profile / make_image: Row factories
- fake_storage / fake_generator / fake_trigger: In-memory stand-ins for S3,
  Replicate and the worker trigger
- auth_headers: Signed user JWT headers
- test_client: AsyncClient wired to the app with test services on app.state
"""

import os
import subprocess
import sys
import time
from pathlib import Path
from typing import AsyncGenerator
from uuid import UUID, uuid4

# Must be set before adforge.app is imported (Settings() runs at import time)
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("WORKER_SERVICE_TOKEN", "test-service-token")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_STARTER_PRICE_ID", "price_starter")
os.environ.setdefault("STRIPE_PRO_PRICE_ID", "price_pro")
os.environ.setdefault("STRIPE_BUSINESS_PRICE_ID", "price_business")

import httpx  # noqa: E402
import jwt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import text  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402
from testcontainers.postgres import PostgresContainer  # noqa: E402

from adforge.core.config import Settings  # noqa: E402
from adforge.core.database import setup_db_session  # noqa: E402
from adforge.models.profile import Profile  # noqa: E402
from adforge.models.source_image import SourceImage  # noqa: E402
from adforge.services.exceptions import InternalError, StorageError  # noqa: E402

PROJECT_ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture(scope="session")
def postgres_container():
    """Provide session-scoped PostgreSQL container with migrations applied.

    Container starts once per test session and is reused across all tests.
    Migrations are applied using subprocess to avoid asyncio event loop conflicts.
    """
    with PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="test_adforge",
    ).with_bind_ports(5432, None) as container:
        db_url = container.get_connection_url(driver="psycopg")

        # Set DATABASE_URL environment variable for alembic env.py
        env = os.environ.copy()
        env["DATABASE_URL"] = db_url

        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
            cwd=PROJECT_ROOT,
        )

        yield container


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session(postgres_container) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session with table truncation.

    Each test gets a fresh session with empty tables (truncated between tests).
    """
    db_url = postgres_container.get_connection_url(driver="psycopg")
    session_factory = setup_db_session(db_url, pool_size=5)

    async with session_factory() as session:
        yield session

        # Rollback any uncommitted changes from the test
        await session.rollback()

        # Order matters: delete from dependent tables first
        await session.execute(text("DELETE FROM usage_events"))
        await session.execute(text("DELETE FROM jobs"))
        await session.execute(text("DELETE FROM images"))
        await session.execute(text("DELETE FROM profiles"))
        await session.commit()

    await session.bind.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(session: AsyncSession):
    """Session factory bound to the test session's engine."""
    return async_sessionmaker(bind=session.bind, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory.

    Returns a callable that creates UoW instances on the test engine.
    """
    from adforge.uow import create_uow_factory

    return create_uow_factory(session_factory)


@pytest.fixture
def settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


@pytest.fixture
def make_profile(uow_factory):
    """Create and commit a profile. Returns the profile."""

    async def _make(
        credits: int = 10,
        user_id: UUID | None = None,
        email: str | None = None,
        subscription_status: str | None = None,
        stripe_customer_id: str | None = None,
    ) -> Profile:
        profile = Profile(
            id=user_id or uuid4(),
            credits=credits,
            email=email,
            subscription_status=subscription_status,
            stripe_customer_id=stripe_customer_id,
        )
        async with await uow_factory() as uow:
            await uow.profiles.add(profile)
        return profile

    return _make


@pytest.fixture
def make_image(uow_factory, fake_storage):
    """Create and commit a source image row and store its bytes in fake storage."""

    async def _make(user_id: UUID, name: str = "scene.png", store: bool = True) -> SourceImage:
        image_id = uuid4()
        image = SourceImage(
            id=image_id,
            user_id=user_id,
            file_path=f"{user_id}/root/{image_id}-{name}",
            original_name=name,
        )
        async with await uow_factory() as uow:
            await uow.images.add(image)
        if store:
            fake_storage.put("uploads", image.file_path, b"source-bytes", "image/png")
        return image

    return _make


class FakeStorage:
    """In-memory object storage with the S3Storage interface."""

    def __init__(self):
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.signed: list[tuple[str, str, int]] = []
        self.fail_uploads = False

    def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        self.objects[(bucket, key)] = (data, content_type)

    async def create_signed_url(self, bucket: str, key: str, expires_in: int = 300) -> str:
        if (bucket, key) not in self.objects:
            raise StorageError(f"Object not found: {bucket}/{key}")
        self.signed.append((bucket, key, expires_in))
        return f"https://storage.test/{bucket}/{key}?expires={expires_in}"

    async def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        if self.fail_uploads:
            raise StorageError(f"Upload failed for {bucket}/{key}")
        self.put(bucket, key, data, content_type)


class FakeGenerator:
    """Records requests; returns configured URLs or raises a configured error."""

    def __init__(self):
        self.requests = []
        self.urls = ["https://provider.test/output-0.png"]
        self.error: Exception | None = None

    async def generate(self, request) -> list[str]:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return list(self.urls)


class FakeTrigger:
    """Worker trigger stand-in. Does not run the job."""

    def __init__(self):
        self.triggered: list[UUID] = []
        self.fail = False

    async def trigger(self, job_id: UUID) -> dict:
        if self.fail:
            raise InternalError("Failed to start job", job_id=str(job_id))
        self.triggered.append(job_id)
        return {"success": True, "result_path": None}


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def fake_trigger() -> FakeTrigger:
    return FakeTrigger()


@pytest.fixture
def provider_transport() -> httpx.MockTransport:
    """Serves fake provider downloads: any URL returns PNG bytes."""

    def handler(request: httpx.Request) -> httpx.Response:
        if "missing" in request.url.path:
            return httpx.Response(404)
        if request.url.path.endswith(".mp4"):
            return httpx.Response(200, content=b"video-bytes", headers={"content-type": "video/mp4"})
        return httpx.Response(200, content=b"\x89PNG-bytes", headers={"content-type": "image/png"})

    return httpx.MockTransport(handler)


@pytest.fixture
def materializer(fake_storage, provider_transport):
    from adforge.services.materializer import ResultMaterializer

    return ResultMaterializer(fake_storage, "results", timeout=5, transport=provider_transport)


@pytest.fixture
def request_builder(fake_storage):
    from adforge.services.generation.request_builder import GenerationRequestBuilder

    return GenerationRequestBuilder(fake_storage, "uploads", signed_url_ttl=300)


def make_token(user_id: UUID, secret: str = "test-jwt-secret", **overrides) -> str:
    """Encode a user access token the way the auth provider does."""
    claims = {
        "sub": str(user_id),
        "aud": "authenticated",
        "exp": int(time.time()) + 3600,
        "role": "authenticated",
    }
    claims.update(overrides)
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def auth_headers():
    """Build Authorization headers for a user id."""

    def _headers(user_id: UUID, **overrides) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user_id, **overrides)}"}

    return _headers


@pytest_asyncio.fixture
async def test_client(
    settings,
    session_factory,
    uow_factory,
    fake_trigger,
    fake_generator,
    request_builder,
    materializer,
):
    """Provide AsyncClient for testing API endpoints with database access.

    ASGITransport does not run the lifespan, so services are placed on
    app.state directly.
    """
    from adforge.app import app
    from adforge.services.billing.consumer import BillingEventConsumer, SubscriptionInfo
    from adforge.services.billing.plans import PlanCatalog
    from adforge.services.dispatcher import JobDispatcher

    async def lookup_subscription(subscription_id: str) -> SubscriptionInfo:
        return SubscriptionInfo(
            id=subscription_id, status="active", customer_id=None, price_id="price_pro"
        )

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.request_builder = request_builder
    app.state.generator = fake_generator
    app.state.materializer = materializer
    app.state.dispatcher = JobDispatcher(
        uow_factory,
        fake_trigger,
        free_daily_limit=settings.free_daily_job_limit,
        free_total_limit=settings.free_total_job_limit,
    )
    app.state.billing_consumer = BillingEventConsumer(
        uow_factory, PlanCatalog.from_settings(settings), lookup_subscription
    )

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client
