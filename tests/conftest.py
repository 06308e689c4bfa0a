"""pytest fixtures for SwapMyLook backend tests.

Provides:
- Test environment variables (set before the app module is imported)
- postgres_container: Session-scoped PostgreSQL with migrations (TEST_DATABASE=postgres)
- session_factory: Function-scoped session factory on a fresh database
- session: Function-scoped database session
- uow_factory: Function-scoped UnitOfWork factory
- storage: In-memory object storage double
- test_client: httpx AsyncClient bound to the FastAPI app
- make_user / make_assets / make_job / sign_webhook: data and request builders

Tests run against a throwaway SQLite file by default. Set TEST_DATABASE=postgres
to run the same tests against a testcontainers PostgreSQL with Alembic migrations.
"""

import base64
import os
import subprocess
import time
from pathlib import Path
from typing import AsyncGenerator

# Settings are read when swapmylook.app is imported; configure the test env first
os.environ["TZ"] = "UTC"
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault(
    "GENERATION_WEBHOOK_SECRET",
    "whsec_" + base64.b64encode(b"generation-test-secret").decode("ascii"),
)
os.environ.setdefault("PAYMENTS_WEBHOOK_SECRET", "payments-test-secret")
os.environ.setdefault("DODO_PRODUCT_BASIC", "prod_basic_monthly")
os.environ.setdefault("DODO_PRODUCT_PREMIUM", "prod_premium_monthly")
os.environ.setdefault("DODO_PRODUCT_PRO", "prod_pro_monthly")
os.environ.setdefault("DODO_PRODUCT_PRO_YEARLY", "prod_pro_yearly")
os.environ.setdefault("RUN_WORKER_IN_APP", "false")
os.environ.setdefault("REPLICATE_API_TOKEN", "r8_test_token")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import text  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

from swapmylook import models  # noqa: E402,F401
from swapmylook.core.config import Settings  # noqa: E402
from swapmylook.core.database import setup_db_session  # noqa: E402
from swapmylook.models.asset import AssetKind, ImageAsset  # noqa: E402
from swapmylook.models.job import GenerationJob  # noqa: E402
from swapmylook.models.user import User  # noqa: E402
from swapmylook.repositories.work_queue import WorkQueueRepository  # noqa: E402
from swapmylook.services.exceptions import StorageError  # noqa: E402
from swapmylook.services.webhooks.signature import compute_signature  # noqa: E402
from swapmylook.uow import create_uow_factory  # noqa: E402

BACKEND_ROOT = Path(__file__).resolve().parent.parent

# Child tables first
TABLES = [
    "audit_entries",
    "webhook_receipts",
    "work_queue_items",
    "generation_jobs",
    "image_assets",
    "users",
]


def use_postgres() -> bool:
    return os.environ.get("TEST_DATABASE", "sqlite").lower() == "postgres"


class InMemoryStorage:
    """Object storage double with the S3ObjectStorage interface."""

    def __init__(self):
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.fail_puts = 0

    async def put(self, data: bytes, key: str, content_type: str) -> None:
        if self.fail_puts > 0:
            self.fail_puts -= 1
            raise StorageError(f"Simulated upload failure for {key}")
        self.objects[key] = (data, content_type)

    async def get(self, key: str) -> bytes:
        try:
            return self.objects[key][0]
        except KeyError:
            raise StorageError(f"No such key: {key}")

    async def get_signed_url(self, key: str, ttl_seconds: int) -> str:
        return f"https://storage.test/{key}?expires_in={ttl_seconds}"


@pytest.fixture(scope="session")
def postgres_container():
    """Provide session-scoped PostgreSQL container with migrations applied.

    Only started when TEST_DATABASE=postgres. Migrations run in a subprocess to
    avoid asyncio event loop conflicts with alembic's env.py.
    """
    if not use_postgres():
        yield None
        return

    from testcontainers.postgres import PostgresContainer

    with PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="test_swapmylook",
    ) as container:
        db_url = container.get_connection_url(driver="psycopg")

        env = os.environ.copy()
        env["DATABASE_URL"] = db_url

        subprocess.run(
            ["alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
            cwd=BACKEND_ROOT,
        )

        yield container


@pytest.fixture
def database_url(postgres_container, tmp_path) -> str:
    """Database URL for the current test."""
    if postgres_container is not None:
        return postgres_container.get_connection_url(driver="psycopg")
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest_asyncio.fixture(scope="function")
async def session_factory(database_url):
    """Provide a session factory on an empty schema.

    SQLite gets a fresh file per test with tables created from SQLModel metadata;
    PostgreSQL tables are truncated after each test.
    """
    factory = setup_db_session(database_url, pool_size=5)
    engine = factory.kw["bind"]

    if not use_postgres():
        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    if use_postgres():
        async with engine.begin() as conn:
            for table in TABLES:
                await conn.execute(text(f"DELETE FROM {table}"))

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session.

    Tests commit their setup data so that sessions opened by the code under
    test (workers, routes) can see it.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def settings(database_url) -> Settings:
    """Test settings pointing at the test database with zero retry backoff."""
    return Settings().model_copy(  # type: ignore[call-arg]
        update={
            "database_url": database_url,
            "retry_backoff_seconds": 0.0,
            "generation_mode": "inline",
            "worker_concurrency": 1,
        }
    )


@pytest_asyncio.fixture
async def test_client(uow_factory, session_factory, storage, settings):
    """Provide AsyncClient for testing API endpoints with database access."""
    from swapmylook.api.dependencies import get_settings
    from swapmylook.app import app

    # Lifespan does not run under ASGITransport; inject app-scoped resources
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.storage = storage
    app.dependency_overrides[get_settings] = lambda: settings

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session):
    """Create and commit a user."""
    counter = {"n": 0}

    async def _make_user(**overrides) -> User:
        counter["n"] += 1
        fields = {"email": f"user{counter['n']}@example.com", "name": f"User {counter['n']}"}
        fields.update(overrides)
        user = User(**fields)
        session.add(user)
        await session.commit()
        return user

    return _make_user


@pytest.fixture
def make_assets(session, storage):
    """Create and commit a subject/style asset pair for a user."""

    async def _make_assets(owner: User) -> tuple[ImageAsset, ImageAsset]:
        subject = ImageAsset(
            owner_id=owner.id,
            kind=AssetKind.SUBJECT,
            storage_key=f"inputs/{owner.id}/subject-{time.monotonic_ns()}.png",
            content_type="image/png",
            size_bytes=4,
        )
        style = ImageAsset(
            owner_id=owner.id,
            kind=AssetKind.STYLE,
            storage_key=f"inputs/{owner.id}/style-{time.monotonic_ns()}.png",
            content_type="image/png",
            size_bytes=4,
        )
        session.add(subject)
        session.add(style)
        await session.commit()
        await storage.put(b"subj", subject.storage_key, "image/png")
        await storage.put(b"styl", style.storage_key, "image/png")
        return subject, style

    return _make_assets


@pytest.fixture
def sign_webhook():
    """Build Standard Webhooks headers for a body."""

    def _sign(
        body: bytes,
        secret: str,
        webhook_id: str = "msg_test_1",
        timestamp: int | None = None,
    ) -> dict[str, str]:
        ts = str(int(time.time()) if timestamp is None else timestamp)
        signature = compute_signature(secret, webhook_id, ts, body)
        return {
            "webhook-id": webhook_id,
            "webhook-timestamp": ts,
            "webhook-signature": f"v1,{signature}",
            "content-type": "application/json",
        }

    return _sign


@pytest.fixture
def make_job(session, make_user, make_assets):
    """Create and commit a queued job, optionally with its queue entry."""

    async def _make_job(owner: User | None = None, enqueue: bool = True, **overrides):
        owner = owner or await make_user()
        subject, style = await make_assets(owner)
        job = GenerationJob(
            owner_id=owner.id,
            subject_asset_id=subject.id,
            style_asset_id=style.id,
            **overrides,
        )
        session.add(job)
        await session.flush()
        if enqueue:
            await WorkQueueRepository(session).enqueue(
                job.id, priority=job.priority, max_attempts=job.max_attempts
            )
        await session.commit()
        return job

    return _make_job
