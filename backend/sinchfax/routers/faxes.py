"""
Fax list / send endpoints used by the host UI.

Errors from Sinch or from validation are returned as messages; the listing
itself never fails because a status refresh did.
"""

import logging
import os
import shutil
import tempfile
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse

from sinchfax.errors import (
    InvalidSendRequest,
    ModuleDisabledOrUnconfigured,
    ProviderRequestFailed,
    SinchFaxError,
)
from sinchfax.routers.deps import get_fax_service
from sinchfax.services.fax_service import RECENT_LIMIT, FaxService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sinchfax", tags=["Sinch Fax"])

UPLOAD_EXTENSIONS = {
    "application/pdf": ".pdf",
    "image/tiff": ".tif",
    "image/tif": ".tif",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
}


def _failure(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, "message": message})


@router.get("/faxes")
async def list_faxes(
        direction: Optional[str] = None,
        status: Optional[str] = None,
        service: FaxService = Depends(get_fax_service),
):
    """Most recent faxes, with in-flight statuses refreshed from Sinch when needed."""
    jobs = await service.list_recent(limit=RECENT_LIMIT, direction=direction, status=status)

    try:
        refreshed = await service.refresh_statuses(jobs)
        if refreshed:
            logger.info(f"Refreshed status for {refreshed} fax(es)")
    except Exception as e:
        logger.error(f"Error refreshing fax statuses: {e}")

    return {"faxes": [job.to_dict() for job in jobs], "total": len(jobs)}


@router.get("/faxes/{sinch_fax_id}")
async def get_fax_job(sinch_fax_id: str, service: FaxService = Depends(get_fax_service)):
    job = await service.get_job(sinch_fax_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Fax not found: {sinch_fax_id}")
    return job.to_dict()


@router.post("/faxes")
async def send_fax(
        to: str = Form(""),
        patient_id: Optional[str] = Form(None),
        user_id: Optional[str] = Form(None),
        cover_page_id: Optional[str] = Form(None),
        files: List[UploadFile] = File(default=[]),
        service: FaxService = Depends(get_fax_service),
):
    """Send uploaded documents as one fax."""
    if not to.strip():
        return _failure(400, "invalid_request", "Recipient number is required")

    uploads = [upload for upload in files if upload.filename]
    if not uploads:
        return _failure(400, "invalid_request", "At least one file is required")

    tmp_dir = tempfile.mkdtemp(prefix="sinch_fax_")
    try:
        paths = []
        for index, upload in enumerate(uploads):
            extension = UPLOAD_EXTENSIONS.get(upload.content_type or "", ".pdf")
            path = os.path.join(tmp_dir, f"upload_{index}{extension}")
            with open(path, "wb") as f:
                f.write(await upload.read())
            paths.append(path)

        result = await service.send_fax(
            to,
            paths,
            patient_id=patient_id,
            user_id=user_id,
            cover_page_id=cover_page_id or None,
            mime_type=uploads[0].content_type or "application/pdf",
        )
    except ModuleDisabledOrUnconfigured as e:
        return _failure(503, "module_disabled", str(e))
    except InvalidSendRequest as e:
        return _failure(400, "invalid_request", str(e))
    except ProviderRequestFailed as e:
        return _failure(502, "provider_request_failed", f"Error sending fax: {e}")
    except SinchFaxError as e:
        return _failure(500, "fax_error", f"Error sending fax: {e}")
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)

    return {
        "success": True,
        "id": result.get("id"),
        "status": result.get("status"),
        "message": f"Fax sent successfully! ID: {result.get('id') or 'Unknown'}",
    }
