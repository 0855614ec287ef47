"""
Pytest configuration and fixtures for the Sinch Fax tests.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession

from sinchfax.config import FaxConfig
from sinchfax.database.db import get_db, init_models, make_engine, make_session_factory
from sinchfax.main import create_app
from sinchfax.routers.deps import get_config, get_fax_service
from sinchfax.services.fax_service import FaxService
from sinchfax.services.fax_storage import FaxStorage
from tests.fakes import FakeSinchClient

FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def fax_config(tmp_path: Path) -> FaxConfig:
    return FaxConfig(
        enabled=True,
        project_id="proj-123",
        auth_method="basic",
        api_key="key-abc",
        api_secret_encrypted="secret-xyz",
        file_storage_path=str(tmp_path / "faxes"),
        site_addr="https://emr.example.com",
        webroot="/openemr",
        incoming_polling_enabled=True,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
    )


@pytest.fixture
def fake_client() -> FakeSinchClient:
    return FakeSinchClient()


@pytest_asyncio.fixture
async def db_session(fax_config: FaxConfig) -> AsyncGenerator[AsyncSession, None]:
    engine = make_engine(fax_config.database_url)
    await init_models(engine)
    session_factory = make_session_factory(engine)

    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def fax_service(fax_config: FaxConfig, db_session: AsyncSession, fake_client: FakeSinchClient) -> FaxService:
    return FaxService(
        fax_config,
        db_session,
        client=fake_client,
        storage=FaxStorage(fax_config.storage_path),
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def sample_pdf(tmp_path: Path) -> Path:
    path = tmp_path / "referral.pdf"
    path.write_bytes(b"%PDF-1.4 referral letter")
    return path


@pytest.fixture
def make_client(fake_client: FakeSinchClient):
    """Build a TestClient whose FaxService talks to the fake Sinch client."""

    def build(config: FaxConfig) -> TestClient:
        app = create_app(config)

        def service_with_fake_client(config=Depends(get_config), db=Depends(get_db)):
            return FaxService(config, db, client=fake_client, storage=FaxStorage(config.storage_path))

        app.dependency_overrides[get_fax_service] = service_with_fake_client
        return TestClient(app)

    return build


@pytest.fixture
def client(fax_config: FaxConfig, make_client):
    with make_client(fax_config) as test_client:
        yield test_client
