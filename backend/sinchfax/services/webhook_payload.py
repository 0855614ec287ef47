# backend/sinchfax/services/webhook_payload.py
"""
Sinch Fax webhook payloads

Sinch delivers fax events either as multipart/form-data (fields ``event``,
``eventTime``, ``fax`` as a JSON string and an optional ``file`` part) or as
application/json with the same fields and the document base64-encoded.
Both shapes are normalised into ``WebhookPayload``.
"""

import base64
import binascii
import json
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel

from sinchfax.errors import InvalidWebhookPayload

FILE_TYPE_PDF = "PDF"


class WebhookEvent(str, Enum):
    INCOMING_FAX = "INCOMING_FAX"
    FAX_COMPLETED = "FAX_COMPLETED"
    UNRECOGNIZED = "UNRECOGNIZED"

    @classmethod
    def parse(cls, value: Optional[str]) -> "WebhookEvent":
        """Exact match on the known event names; anything else is UNRECOGNIZED."""
        if value in (cls.INCOMING_FAX.value, cls.FAX_COMPLETED.value):
            return cls(value)
        return cls.UNRECOGNIZED


class WebhookPayload(BaseModel):
    """Normalised webhook delivery."""
    event: str = ""
    eventTime: Optional[str] = None
    fax: Dict[str, Any] = {}
    content: Optional[bytes] = None
    fileType: Optional[str] = None

    class Config:
        extra = "allow"

    @property
    def kind(self) -> WebhookEvent:
        return WebhookEvent.parse(self.event)

    @property
    def fax_id(self) -> Optional[str]:
        value = self.fax.get("id")
        if value is None or str(value).strip() == "":
            return None
        return str(value)

    def require_fax_id(self) -> str:
        fax_id = self.fax_id
        if not fax_id:
            raise InvalidWebhookPayload("Invalid webhook data: missing fax ID")
        return fax_id

    @property
    def has_pdf(self) -> bool:
        return bool(self.content) and (self.fileType or "").upper() == FILE_TYPE_PDF


def _decode_fax(value: Any) -> Dict[str, Any]:
    if value is None or value == "":
        return {}
    if isinstance(value, dict):
        return value
    if isinstance(value, (str, bytes)):
        try:
            decoded = json.loads(value)
        except ValueError as e:
            raise InvalidWebhookPayload(f"Invalid fax JSON: {e}") from e
        if isinstance(decoded, dict):
            return decoded
    raise InvalidWebhookPayload("Invalid fax data: expected an object")


def parse_json_body(raw: bytes) -> WebhookPayload:
    """Parse an application/json delivery."""
    try:
        data = json.loads(raw or b"")
    except ValueError as e:
        raise InvalidWebhookPayload("Invalid request data") from e

    if not isinstance(data, dict) or not data:
        raise InvalidWebhookPayload("Invalid request data")

    content = None
    if data.get("file"):
        try:
            content = base64.b64decode(data["file"], validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise InvalidWebhookPayload("Invalid file data: not base64") from e

    return WebhookPayload(
        event=str(data.get("event") or ""),
        eventTime=data.get("eventTime"),
        fax=_decode_fax(data.get("fax")),
        content=content,
        fileType=data.get("fileType"),
    )


async def parse_form_body(form) -> WebhookPayload:
    """
    Parse a multipart/form-data delivery.

    Args:
        form: Starlette FormData from ``await request.form()``
    """
    if not form:
        raise InvalidWebhookPayload("Invalid request data")

    content = None
    file_type = None
    upload = form.get("file")
    if upload is not None and hasattr(upload, "read"):
        content = await upload.read()
        file_type = FILE_TYPE_PDF if content else None

    return WebhookPayload(
        event=str(form.get("event") or ""),
        eventTime=form.get("eventTime") or None,
        fax=_decode_fax(form.get("fax")),
        content=content,
        fileType=file_type,
    )
