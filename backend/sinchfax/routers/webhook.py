"""
Sinch Fax Webhook Router

Receives fax event callbacks from Sinch and hands them to FaxService.

Configure the callback URL in the Sinch dashboard (or let outbound sends set
it per fax when the site address is public):

    https://your-domain.com/sinchfax/webhook
"""

import hashlib
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from sinchfax.config import FaxConfig
from sinchfax.errors import InvalidWebhookPayload
from sinchfax.routers.deps import get_config, get_fax_service
from sinchfax.services.fax_service import FaxService
from sinchfax.services.webhook_payload import (
    WebhookEvent,
    WebhookPayload,
    parse_form_body,
    parse_json_body,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sinchfax", tags=["Sinch Fax Webhooks"])

SIGNATURE_HEADER = "X-Sinch-Signature"
ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def verify_webhook_signature(
        payload_body: bytes,
        signature_header: Optional[str],
        secret: str,
) -> bool:
    """
    Verify the HMAC-SHA256 hex signature of the raw request body.

    Args:
        payload_body: Raw request body bytes
        signature_header: Signature from the X-Sinch-Signature header
        secret: Shared webhook secret
    """
    if not signature_header:
        return False

    expected_signature = hmac.new(
        secret.encode("utf-8"),
        payload_body,
        hashlib.sha256,
    ).hexdigest()

    # Constant-time comparison
    return hmac.compare_digest(expected_signature, signature_header.strip().lower())


async def parse_webhook_request(request: Request, body: bytes) -> WebhookPayload:
    content_type = request.headers.get("content-type", "")

    if "multipart/form-data" in content_type:
        try:
            form = await request.form()
        except Exception as e:
            raise InvalidWebhookPayload("Invalid request data") from e
        return await parse_form_body(form)

    if "application/json" in content_type:
        return parse_json_body(body)

    raise InvalidWebhookPayload("Unsupported content type")


async def dispatch_event(service: FaxService, payload: WebhookPayload) -> None:
    kind = payload.kind
    if kind is WebhookEvent.INCOMING_FAX:
        await service.process_incoming_fax(payload)
    elif kind is WebhookEvent.FAX_COMPLETED:
        await service.process_fax_completed(payload)
    else:
        logger.warning(f"Unknown webhook event: {payload.event!r}")


@router.api_route("/webhook", methods=ALL_METHODS)
async def receive_webhook(
        request: Request,
        config: FaxConfig = Depends(get_config),
        service: FaxService = Depends(get_fax_service),
):
    """
    Sinch fax event callback.

    Returns:
        200: {"status": "success"} (also for events we do not handle)
        400: Missing/invalid body or unsupported content type
        401: Bad signature (only when a webhook secret is configured)
        404: Webhooks disabled
        405: Not a POST
        500: Processing error
    """
    if not config.webhooks_enabled:
        return JSONResponse(status_code=404, content={"error": "Not found"})

    logger.info(
        f"📨 Sinch webhook received: method={request.method} "
        f"content_type={request.headers.get('content-type', '')}"
    )

    if request.method != "POST":
        return _error(405, "Method not allowed")

    body = await request.body()

    secret = config.webhook_secret()
    if secret and not verify_webhook_signature(body, request.headers.get(SIGNATURE_HEADER), secret):
        logger.error("❌ Invalid webhook signature - rejecting request")
        return _error(401, "Invalid signature")

    try:
        payload = await parse_webhook_request(request, body)
    except InvalidWebhookPayload as e:
        logger.error(f"❌ Invalid webhook payload: {e}")
        return _error(400, str(e))

    try:
        await dispatch_event(service, payload)
    except InvalidWebhookPayload as e:
        logger.error(f"❌ Invalid webhook payload: {e}")
        return _error(400, "Invalid request data")
    except Exception as e:
        logger.exception(f"❌ Webhook processing error: {e}")
        return _error(500, "Internal server error")

    return {"status": "success"}
