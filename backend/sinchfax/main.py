from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from sinchfax.config import FaxConfig
from sinchfax.database.db import init_models, make_engine, make_session_factory
from sinchfax.routers import faxes, webhook

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(config: Optional[FaxConfig] = None) -> FastAPI:
    """Build the application around one FaxConfig shared by every request."""
    config = config or FaxConfig.from_env()

    if config.enabled and not config.is_configured():
        logger.warning(
            "WARNING: Sinch Fax is enabled but credentials are missing. "
            "Set SINCH_FAX_PROJECT_ID and SINCH_FAX_API_KEY/SINCH_FAX_API_SECRET "
            "(or SINCH_FAX_OAUTH_TOKEN). Faxing will fail until they are configured."
        )

    engine = make_engine(config.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_models(engine)
        yield
        await engine.dispose()

    app = FastAPI(title="Sinch Fax Integration", lifespan=lifespan)
    app.state.config = config
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)

    app.include_router(webhook.router)
    app.include_router(faxes.router)

    @app.get("/healthz")
    async def healthz():
        return {"ok": True, "enabled": config.enabled, "configured": config.is_configured()}

    return app
