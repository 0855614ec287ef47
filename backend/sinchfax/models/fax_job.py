"""
FaxJob model

One row per outbound or inbound fax transmission, keyed locally by ``id`` and
remotely by the Sinch-assigned ``sinch_fax_id``.
"""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from sinchfax.database.db import Base

OUTBOUND = "OUTBOUND"
INBOUND = "INBOUND"

STATUS_IN_PROGRESS = "IN_PROGRESS"
STATUS_FAILURE = "FAILURE"
STATUS_UNKNOWN = "UNKNOWN"


class FaxJob(Base):
    """
    Represents a fax sent or received through Sinch.

    Attributes:
        id: Local surrogate key
        sinch_fax_id: Provider fax ID (unique, immutable once set)
        direction: OUTBOUND or INBOUND
        status: Provider status string (QUEUED, IN_PROGRESS, SUCCESS, FAILURE, ...)
        file_path: Stored fax document, if any
        download_pending: Provider reported content we have not stored yet
        error_code / error_message: Failure detail reported by the provider
    """
    __tablename__ = "sinch_faxes"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True)
    sinch_fax_id = Column(String(64), unique=True, nullable=True)
    direction = Column(String(10), nullable=False)
    from_number = Column(String(32), nullable=True)
    to_number = Column(String(32), nullable=True)
    status = Column(String(32), nullable=False, default=STATUS_UNKNOWN)
    num_pages = Column(Integer, nullable=False, default=0)
    file_path = Column(String, nullable=True)
    mime_type = Column(String(64), nullable=True, default="application/pdf")
    download_pending = Column(Boolean, nullable=False, default=False)
    patient_id = Column(Integer, nullable=True, index=True)
    user_id = Column(Integer, nullable=True)
    callback_url = Column(String, nullable=True)
    cover_page_id = Column(String(64), nullable=True)
    error_code = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)
    sinch_create_time = Column(DateTime(timezone=True), nullable=True)
    sinch_completed_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sinch_fax_id": self.sinch_fax_id,
            "direction": self.direction,
            "from_number": self.from_number,
            "to_number": self.to_number,
            "status": self.status,
            "num_pages": self.num_pages,
            "file_path": self.file_path,
            "mime_type": self.mime_type,
            "download_pending": self.download_pending,
            "patient_id": self.patient_id,
            "user_id": self.user_id,
            "callback_url": self.callback_url,
            "cover_page_id": self.cover_page_id,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "sinch_create_time": self.sinch_create_time.isoformat() if self.sinch_create_time else None,
            "sinch_completed_time": self.sinch_completed_time.isoformat() if self.sinch_completed_time else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return (
            f"<FaxJob(id={self.id}, sinch_fax_id={self.sinch_fax_id}, "
            f"direction={self.direction}, status={self.status})>"
        )
