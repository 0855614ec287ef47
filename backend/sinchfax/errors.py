"""Error kinds raised by the Sinch Fax integration."""

from typing import Optional


class SinchFaxError(Exception):
    """Base class for all fax integration errors."""


class ProviderRequestFailed(SinchFaxError):
    """Transport failure or non-2xx response from the Sinch Fax API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidWebhookPayload(SinchFaxError):
    """Webhook body is missing, unparseable, or lacks the fax identity."""


class ModuleDisabledOrUnconfigured(SinchFaxError):
    """Feature gate failed before any remote call was attempted."""


class StorageWriteFailed(SinchFaxError):
    """Fax content could not be written to the storage directory."""


class InvalidSendRequest(SinchFaxError):
    """Outbound send parameters are incomplete (recipient, files)."""
