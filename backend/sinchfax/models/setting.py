from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from sinchfax.database.db import Base


class FaxSetting(Base):
    """Key/value settings persisted by the integration (poll checkpoint)."""
    __tablename__ = "sinch_fax_settings"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True)
    name = Column(String(64), unique=True, nullable=False)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
