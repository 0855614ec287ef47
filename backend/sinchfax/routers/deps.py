from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from sinchfax.config import FaxConfig
from sinchfax.database.db import get_db
from sinchfax.services.fax_service import FaxService


def get_config(request: Request) -> FaxConfig:
    return request.app.state.config


def get_fax_service(
        config: FaxConfig = Depends(get_config),
        db: AsyncSession = Depends(get_db),
) -> FaxService:
    return FaxService(config, db)
