# backend/sinchfax/services/fax_service.py
"""
Fax Service

The one place where Sinch responses and events become ``FaxJob`` rows:

1. Send outbound faxes and record them
2. Apply INCOMING_FAX / FAX_COMPLETED webhook events
3. Poll Sinch for inbound faxes the webhooks may have missed
4. Refresh in-flight statuses on demand

Rows are keyed by the Sinch fax ID, which carries a unique constraint. New
rows go through an insert-if-absent so a webhook delivery and a poll that see
the same fax at the same time cannot create two rows.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sinchfax.config import FaxConfig, format_checkpoint, get_last_poll_time, set_last_poll_time
from sinchfax.errors import (
    InvalidSendRequest,
    ModuleDisabledOrUnconfigured,
    ProviderRequestFailed,
    StorageWriteFailed,
)
from sinchfax.models.fax_job import (
    INBOUND,
    OUTBOUND,
    STATUS_FAILURE,
    STATUS_IN_PROGRESS,
    STATUS_UNKNOWN,
    FaxJob,
)
from sinchfax.services.fax_storage import FaxStorage
from sinchfax.services.sinch_client import SinchFaxClient
from sinchfax.services.webhook_payload import WebhookPayload

logger = logging.getLogger(__name__)

POLL_PAGE_SIZE = 100
POLL_MAX_PAGES = 50
RECENT_LIMIT = 50


# ============================================================================
# HELPERS
# ============================================================================

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_provider_time(value: Any) -> Optional[datetime]:
    """Parse a Sinch ISO-8601 timestamp ("2025-01-01T00:00:00Z"); naive values are UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Could not parse provider time: {value!r}")
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_optional_int(value: Any) -> Optional[int]:
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _error_code(value: Any) -> Optional[str]:
    """Provider error code, with the "no error" code 0 treated as absent."""
    code = _as_optional_str(value)
    if code is None or code.strip() in ("", "0"):
        return None
    return code


def _linkage_id(value: Any, name: str) -> Optional[int]:
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidSendRequest(f"{name} must be a number, got {value!r}") from None


def _is_true(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def has_changes(job: FaxJob, remote: Dict[str, Any]) -> bool:
    """
    True when the provider reports something worth writing: a different
    status, a different page count, or error detail we did not have yet.
    """
    status = remote.get("status")
    if status and status != job.status:
        return True

    pages = remote.get("numberOfPages")
    if pages is not None and _as_int(pages) != (job.num_pages or 0):
        return True

    if remote.get("errorMessage") and not job.error_message:
        return True

    if _error_code(remote.get("errorCode")) and not job.error_code:
        return True

    return False


def apply_remote_state(job: FaxJob, remote: Dict[str, Any]) -> None:
    """
    Overwrite local state with the provider's latest values.

    Error detail is only replaced when the provider sends new detail, it is
    never cleared by an update that omits it. An error code of 0 is not
    failure detail.
    """
    if remote.get("status"):
        job.status = remote["status"]

    if remote.get("numberOfPages") is not None:
        job.num_pages = _as_int(remote["numberOfPages"], job.num_pages or 0)

    error_code = _error_code(remote.get("errorCode"))
    error_message = _as_optional_str(remote.get("errorMessage"))
    if error_code or error_message:
        job.error_code = error_code
        job.error_message = error_message

    completed = parse_provider_time(remote.get("completedTime"))
    if completed:
        job.sinch_completed_time = completed


def needs_status_refresh(job: FaxJob) -> bool:
    if not job.sinch_fax_id:
        return False
    if job.status == STATUS_IN_PROGRESS:
        return True
    return job.status == STATUS_FAILURE and not job.error_message


# ============================================================================
# SERVICE
# ============================================================================

class FaxService:
    """
    Reconciles Sinch fax state with local ``FaxJob`` rows.

    Usage:
        service = FaxService(config, db)
        response = await service.send_fax("+15551234567", ["/tmp/referral.pdf"], patient_id=42)
    """

    def __init__(
            self,
            config: FaxConfig,
            db: AsyncSession,
            client: Optional[SinchFaxClient] = None,
            storage: Optional[FaxStorage] = None,
            clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.db = db
        self.client = client or SinchFaxClient(config)
        self.storage = storage or FaxStorage(config.storage_path)
        self.clock = clock

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    def require_ready(self) -> None:
        if not self.config.enabled:
            raise ModuleDisabledOrUnconfigured("Sinch Fax module is not enabled")
        if not self.config.is_configured():
            raise ModuleDisabledOrUnconfigured("Sinch Fax credentials are not configured")

    def should_refresh_statuses(self) -> bool:
        """Callbacks cannot reach us, or polling was explicitly switched on."""
        return (not self.config.has_public_callback_url()) or self.config.status_polling_enabled

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def get_job(self, sinch_fax_id: str) -> Optional[FaxJob]:
        result = await self.db.execute(select(FaxJob).where(FaxJob.sinch_fax_id == str(sinch_fax_id)))
        return result.scalar_one_or_none()

    async def list_recent(
            self,
            limit: int = RECENT_LIMIT,
            direction: Optional[str] = None,
            status: Optional[str] = None,
    ) -> List[FaxJob]:
        stmt = select(FaxJob)
        if direction:
            stmt = stmt.where(FaxJob.direction == direction.upper())
        if status:
            stmt = stmt.where(FaxJob.status == status)
        stmt = stmt.order_by(FaxJob.created_at.desc(), FaxJob.id.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _insert_if_absent(self, values: Dict[str, Any]) -> bool:
        """
        Insert a row unless its Sinch fax ID already exists.

        Returns:
            True if a row was inserted
        """
        dialect = self.db.get_bind().dialect.name

        if dialect in ("sqlite", "postgresql"):
            if dialect == "sqlite":
                from sqlalchemy.dialects.sqlite import insert
            else:
                from sqlalchemy.dialects.postgresql import insert
            stmt = insert(FaxJob).values(**values).on_conflict_do_nothing(index_elements=["sinch_fax_id"])
            result = await self.db.execute(stmt)
            return result.rowcount == 1

        try:
            async with self.db.begin_nested():
                self.db.add(FaxJob(**values))
        except IntegrityError:
            return False
        return True

    @staticmethod
    def _row_values(fax: Dict[str, Any], direction: str, **local: Any) -> Dict[str, Any]:
        return {
            "sinch_fax_id": _as_optional_str(fax.get("id")),
            "direction": direction,
            "from_number": fax.get("from") or local.get("from_number") or "",
            "to_number": fax.get("to") or local.get("to_number") or "",
            "status": fax.get("status") or STATUS_UNKNOWN,
            "num_pages": _as_int(fax.get("numberOfPages")),
            "file_path": local.get("file_path"),
            "mime_type": local.get("mime_type") or "application/pdf",
            "download_pending": bool(local.get("download_pending", False)),
            "patient_id": local.get("patient_id"),
            "user_id": local.get("user_id"),
            "callback_url": fax.get("callbackUrl") or local.get("callback_url"),
            "cover_page_id": _as_optional_str(fax.get("coverPageId") or local.get("cover_page_id")),
            "error_code": _error_code(fax.get("errorCode")),
            "error_message": _as_optional_str(fax.get("errorMessage")),
            "sinch_create_time": parse_provider_time(fax.get("createTime")),
            "sinch_completed_time": parse_provider_time(fax.get("completedTime")),
        }

    # ------------------------------------------------------------------
    # Provider pass-through
    # ------------------------------------------------------------------

    def get_fax(self, fax_id: str) -> Dict[str, Any]:
        return self.client.get_fax(fax_id)

    def list_faxes(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.client.list_faxes(filters)

    def delete_fax(self, fax_id: str) -> bool:
        """Delete the fax at Sinch. The local row is kept."""
        return self.client.delete_fax(fax_id)

    def download_and_save_fax(self, fax_id: str) -> str:
        """Download fax content from Sinch and store it; returns the file path."""
        content = self.client.download_fax(fax_id)
        return self.storage.save(fax_id, content)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send_fax(
            self,
            to: str,
            files: List[str],
            *,
            sender: Optional[str] = None,
            cover_page_id: Optional[str] = None,
            callback_url: Optional[str] = None,
            content_url: Optional[str] = None,
            max_retries: Optional[int] = None,
            patient_id: Optional[Any] = None,
            user_id: Optional[Any] = None,
            mime_type: str = "application/pdf",
    ) -> Dict[str, Any]:
        """
        Send a fax through Sinch and record an OUTBOUND row.

        Args:
            to: Recipient fax number
            files: Local file paths, each attached as a file part
            sender: Optional sending number
            cover_page_id: Sinch cover page identifier
            callback_url: Explicit callback URL (otherwise inferred when public)
            content_url: Remote document URL
            max_retries: Provider-side retry count (defaults to configuration)
            patient_id: Patient the fax belongs to
            user_id: User sending the fax

        Returns:
            The Sinch fax resource

        Raises:
            ModuleDisabledOrUnconfigured, InvalidSendRequest, ProviderRequestFailed
        """
        self.require_ready()

        to = (to or "").strip()
        if not to:
            raise InvalidSendRequest("Recipient fax number is required")

        files = list(files or [])
        if not files and not content_url:
            raise InvalidSendRequest("At least one file is required")
        for path in files:
            if not os.path.isfile(path):
                raise InvalidSendRequest(f"File not found: {os.path.basename(path)}")

        patient_id = _linkage_id(patient_id, "patient_id")
        user_id = _linkage_id(user_id, "user_id")

        params: Dict[str, Any] = {
            "to": to,
            "files": [{"path": path} for path in files],
        }
        if sender:
            params["from"] = sender
        if cover_page_id:
            params["coverPageId"] = cover_page_id
        if content_url:
            params["contentUrl"] = content_url

        if callback_url:
            params["callbackUrl"] = callback_url
        elif self.config.has_public_callback_url():
            params["callbackUrl"] = self.config.default_callback_url()
        else:
            logger.info("No public site address configured; sending without callback URL")

        params["maxRetries"] = max_retries if max_retries is not None else self.config.default_retry_count

        response = self.client.send_fax(params)

        values = self._row_values(
            response,
            OUTBOUND,
            to_number=to,
            from_number=sender,
            patient_id=patient_id,
            user_id=user_id,
            callback_url=params.get("callbackUrl"),
            cover_page_id=cover_page_id,
            mime_type=mime_type,
        )
        try:
            await self._insert_if_absent(values)
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            logger.exception(f"❌ Fax {response.get('id')} was sent but could not be recorded locally")
            raise

        logger.info(f"✅ Recorded outbound fax {response.get('id')} ({values['status']})")
        return response

    # ------------------------------------------------------------------
    # Webhook events
    # ------------------------------------------------------------------

    async def process_incoming_fax(self, payload: WebhookPayload) -> FaxJob:
        """
        Record an INCOMING_FAX event.

        A fax ID seen before is merged into the existing row instead of
        creating a second one; its document is not written again.
        """
        fax_id = payload.require_fax_id()
        logger.info(f"📨 Processing incoming fax {fax_id}")

        existing = await self.get_job(fax_id)
        if existing:
            logger.warning(f"⚠️ Duplicate incoming fax {fax_id} (already recorded as FaxJob #{existing.id})")
            if has_changes(existing, payload.fax):
                apply_remote_state(existing, payload.fax)
            if not existing.file_path and payload.has_pdf:
                existing.file_path = self.storage.save(fax_id, payload.content)
                existing.download_pending = False
            await self.db.commit()
            return existing

        file_path = None
        if payload.has_pdf:
            file_path = self.storage.save(fax_id, payload.content)

        inserted = await self._insert_if_absent(self._row_values(payload.fax, INBOUND, file_path=file_path))
        await self.db.commit()

        job = await self.get_job(fax_id)
        if inserted:
            logger.info(f"✅ Recorded incoming fax {fax_id}")
            return job

        logger.warning(f"⚠️ Incoming fax {fax_id} was recorded concurrently")
        if file_path and not job.file_path:
            job.file_path = file_path
            job.download_pending = False
            await self.db.commit()
        return job

    async def process_fax_completed(self, payload: WebhookPayload) -> int:
        """
        Apply a FAX_COMPLETED event to the matching row.

        Returns:
            Number of rows updated (0 when the fax ID is unknown)
        """
        fax_id = payload.require_fax_id()
        logger.info(f"📬 Processing fax completed {fax_id} status={payload.fax.get('status')}")

        job = await self.get_job(fax_id)
        if not job:
            logger.info(f"No local fax matches completed fax {fax_id}")
            return 0

        apply_remote_state(job, payload.fax)
        await self.db.commit()
        return 1

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _iter_incoming(self, created_after: Optional[str]) -> Iterator[Dict[str, Any]]:
        filters: Dict[str, Any] = {"direction": INBOUND, "pageSize": POLL_PAGE_SIZE}
        if self.config.service_id:
            filters["serviceId"] = self.config.service_id
        if created_after:
            filters["createTime"] = created_after

        for page in range(1, POLL_MAX_PAGES + 1):
            filters["page"] = page
            response = self.client.list_faxes(filters)
            faxes = response.get("faxes") or []
            yield from faxes

            total_pages = _as_optional_int(response.get("totalPages"))
            if total_pages is not None and page >= total_pages:
                return
            if len(faxes) < POLL_PAGE_SIZE:
                return

    async def retry_pending_downloads(self) -> int:
        """Fetch documents that earlier polls could not download."""
        result = await self.db.execute(
            select(FaxJob).where(FaxJob.direction == INBOUND, FaxJob.download_pending.is_(True))
        )
        recovered = 0
        for job in result.scalars().all():
            try:
                job.file_path = self.download_and_save_fax(job.sinch_fax_id)
            except ProviderRequestFailed as e:
                if e.status_code == 404:
                    logger.warning(f"⚠️ Fax {job.sinch_fax_id} no longer exists at Sinch, giving up on its document")
                    job.download_pending = False
                    await self.db.commit()
                else:
                    logger.error(f"❌ Download still failing for fax {job.sinch_fax_id}: {e}")
                continue
            except StorageWriteFailed as e:
                logger.error(f"❌ Download still failing for fax {job.sinch_fax_id}: {e}")
                continue
            job.download_pending = False
            recovered += 1
            await self.db.commit()
        return recovered

    async def poll_incoming_faxes(self) -> int:
        """
        Pull inbound faxes created since the last checkpoint.

        The time window is left to the provider's ``createTime`` filter. The
        checkpoint only has second precision, so faxes from the checkpoint's
        own second are listed again and de-duplicated by fax ID.

        Faxes already recorded are skipped. A failed download still records
        the fax, flagged ``download_pending`` for the next cycle. The
        checkpoint moves to the poll start time after every successful
        listing, whatever happened to individual downloads.

        Returns:
            Number of new faxes recorded
        """
        self.require_ready()

        await self.retry_pending_downloads()

        started = self.clock()
        last_poll = await get_last_poll_time(self.db)
        logger.info(f"🔄 Polling Sinch for incoming faxes since {last_poll or 'the beginning'}")

        new_count = 0
        for fax in self._iter_incoming(last_poll):
            fax_id = _as_optional_str(fax.get("id"))
            if not fax_id:
                continue

            if await self.get_job(fax_id):
                logger.debug(f"Fax {fax_id} already recorded, skipping")
                continue

            file_path = None
            pending = False
            if _is_true(fax.get("hasFile")):
                try:
                    file_path = self.download_and_save_fax(fax_id)
                except (ProviderRequestFailed, StorageWriteFailed) as e:
                    logger.error(f"❌ Could not download fax {fax_id}, will retry next poll: {e}")
                    pending = True

            values = self._row_values(fax, INBOUND, file_path=file_path, download_pending=pending)
            if await self._insert_if_absent(values):
                new_count += 1
            await self.db.commit()

        await set_last_poll_time(self.db, format_checkpoint(started))
        await self.db.commit()

        logger.info(f"✅ Poll complete: {new_count} new incoming fax(es)")
        return new_count

    async def refresh_statuses(self, jobs: List[FaxJob]) -> int:
        """
        Ask Sinch for the current state of in-flight faxes and merge changes.

        Errors for individual faxes are logged and skipped.

        Returns:
            Number of rows updated
        """
        if not self.should_refresh_statuses():
            return 0
        if not (self.config.enabled and self.config.is_configured()):
            return 0

        updated = 0
        for job in jobs:
            if not needs_status_refresh(job):
                continue
            try:
                remote = self.client.get_fax(job.sinch_fax_id)
            except ProviderRequestFailed as e:
                logger.error(f"Error updating fax status for {job.sinch_fax_id}: {e}")
                continue

            if remote.get("status") and has_changes(job, remote):
                apply_remote_state(job, remote)
                updated += 1

        if updated:
            await self.db.commit()
        return updated

    async def refresh_in_flight(self, limit: int = RECENT_LIMIT) -> int:
        jobs = await self.list_recent(limit=limit)
        return await self.refresh_statuses(jobs)
