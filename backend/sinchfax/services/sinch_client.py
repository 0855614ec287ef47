# backend/sinchfax/services/sinch_client.py
"""
Sinch Fax API Client

Thin synchronous wrapper over the Sinch Fax v3 REST API:
send, get, list, download and delete faxes for one project.

Authentication is either HTTP Basic (API key + secret) or Bearer (OAuth token),
chosen by configuration. Secrets are decrypted right before each request and
are never written to the log.

Sinch Fax API documentation: https://developers.sinch.com/docs/fax/api-reference/
"""

import base64
import logging
import os
from contextlib import ExitStack
from typing import Any, Dict, List, Optional

import requests

from sinchfax.config import AUTH_BASIC, AUTH_OAUTH, FaxConfig
from sinchfax.errors import ProviderRequestFailed

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30

LIST_FILTERS = ("serviceId", "direction", "status", "to", "from", "createTime", "page", "pageSize")


class SinchFaxClient:
    """
    Client for one Sinch project.

    Usage:
        client = SinchFaxClient(config)
        fax = client.send_fax({"to": "+15551234567", "files": [{"path": "doc.pdf"}]})
    """

    def __init__(self, config: FaxConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.project_id = config.project_id
        self.auth_method = config.auth_method
        self.base_url = config.base_url
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _auth_headers(self) -> Dict[str, str]:
        if self.auth_method == AUTH_BASIC:
            credentials = f"{self.config.api_key}:{self.config.api_secret()}"
            encoded = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
            return {"Authorization": f"Basic {encoded}"}
        if self.auth_method == AUTH_OAUTH:
            return {"Authorization": f"Bearer {self.config.oauth_token()}"}
        return {}

    def _url(self, path: str = "") -> str:
        return f"{self.base_url}/v3/projects/{self.project_id}/faxes{path}"

    def _request(self, method: str, path: str, action: str, **kwargs) -> requests.Response:
        url = self._url(path)
        try:
            r = self.session.request(
                method,
                url,
                headers=self._auth_headers(),
                timeout=REQUEST_TIMEOUT,
                **kwargs,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Sinch Fax API error ({action}): {e}")
            raise ProviderRequestFailed(f"Failed to {action}: {e}") from e

        if not 200 <= r.status_code < 300:
            logger.error(f"Sinch Fax API error ({action}): {r.status_code} - {r.text}")
            raise ProviderRequestFailed(
                f"Failed to {action}: HTTP {r.status_code}: {r.text}",
                status_code=r.status_code,
            )
        return r

    @staticmethod
    def _json(r: requests.Response, action: str) -> Dict[str, Any]:
        try:
            return r.json()
        except ValueError as e:
            logger.error(f"Invalid JSON from Sinch Fax API ({action}): {r.text[:200]}")
            raise ProviderRequestFailed(f"Failed to {action}: invalid JSON response") from e

    # ------------------------------------------------------------------
    # API operations
    # ------------------------------------------------------------------

    def send_fax(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Send a fax.

        Args:
            params: Dict with keys
                - to: Recipient fax number (E.164)
                - from: Optional sender number
                - files: List of {"path": str, "filename": Optional[str]}
                - contentUrl: Remote document URL (instead of or with files)
                - callbackUrl: Webhook URL for status callbacks
                - coverPageId: Cover page identifier
                - maxRetries: Provider-side retry count

        Returns:
            The fax resource created by Sinch (id, status, ...)
        """
        # Plain fields are sent as multipart parts too, so the body stays
        # multipart/form-data when only a contentUrl is given.
        fields: List[tuple] = []
        for key in ("to", "from", "contentUrl", "callbackUrl", "coverPageId", "maxRetries"):
            if params.get(key) is not None:
                fields.append((key, (None, str(params[key]))))

        files = params.get("files") or []
        logger.info(f"📤 Sending fax to {params.get('to')} with {len(files)} file(s)")

        with ExitStack() as stack:
            parts = list(fields)
            for item in files:
                path = item["path"]
                filename = item.get("filename") or os.path.basename(path)
                try:
                    handle = stack.enter_context(open(path, "rb"))
                except OSError as e:
                    raise ProviderRequestFailed(f"Failed to send fax: cannot read {filename}: {e}") from e
                parts.append(("file", (filename, handle)))

            r = self._request("POST", "", "send fax", files=parts)

        fax = self._json(r, "send fax")
        logger.info(f"✅ Fax accepted by Sinch: id={fax.get('id')} status={fax.get('status')}")
        return fax

    def get_fax(self, fax_id: str) -> Dict[str, Any]:
        r = self._request("GET", f"/{fax_id}", "get fax")
        return self._json(r, "get fax")

    def list_faxes(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """List faxes; only the filters the API understands are forwarded."""
        query = {key: value for key, value in (filters or {}).items() if key in LIST_FILTERS and value is not None}
        r = self._request("GET", "", "list faxes", params=query)
        return self._json(r, "list faxes")

    def download_fax(self, fax_id: str) -> bytes:
        """Returns the binary content of the fax document."""
        r = self._request("GET", f"/{fax_id}/file", "download fax")
        return r.content

    def delete_fax(self, fax_id: str) -> bool:
        self._request("DELETE", f"/{fax_id}", "delete fax")
        logger.info(f"🗑️ Deleted fax {fax_id} at Sinch")
        return True
