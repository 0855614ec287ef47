# backend/sinchfax/config.py
"""
Sinch Fax configuration

Settings are read once per process from environment variables (a ``.env``
file is honoured through python-dotenv) into a ``FaxConfig`` object which is
passed explicitly into the API client, the fax service and the routers.

Secret values (API secret, OAuth token, webhook secret) are stored encrypted
with Fernet and only decrypted at the moment they are needed.
"""

import ipaddress
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping, Optional
from urllib.parse import urlparse

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sinchfax.models.setting import FaxSetting

logger = logging.getLogger(__name__)

AUTH_BASIC = "basic"
AUTH_OAUTH = "oauth"

REGIONS = {
    "global": "Global (Auto-routed)",
    "use1": "US East Coast",
    "eu1": "Europe",
    "sae1": "South America",
    "apse1": "South East Asia 1",
    "apse2": "South East Asia 2",
}

LAST_POLL_TIME = "last_poll_time"
WEBHOOK_PATH = "/sinchfax/webhook"


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer value for {name}, using {default}")
        return default


def is_private_host(site_addr: str) -> bool:
    """
    True when the site address points at a host the provider cannot reach:
    localhost or a loopback/private network address (127.*, 10.*, 192.168.*,
    172.16-31.*).
    """
    parsed = urlparse(site_addr if "://" in site_addr else f"//{site_addr}")
    host = (parsed.hostname or "").lower()
    if not host:
        return True
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_loopback or address.is_private


@dataclass
class FaxConfig:
    """Per-installation settings for the fax integration."""

    enabled: bool = False
    project_id: str = ""
    service_id: str = ""
    auth_method: str = AUTH_BASIC
    api_key: str = ""
    api_secret_encrypted: str = field(default="", repr=False)
    oauth_token_encrypted: str = field(default="", repr=False)
    webhook_secret_encrypted: str = field(default="", repr=False)
    encryption_key: str = field(default="", repr=False)
    region: str = "global"
    file_storage_path: str = ""
    site_dir: str = "."
    default_retry_count: int = 3
    status_polling_enabled: bool = False
    webhooks_enabled: bool = True
    incoming_polling_enabled: bool = False
    site_addr: str = ""
    webroot: str = ""
    database_url: str = ""

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "FaxConfig":
        """Load configuration from environment variables"""
        env = os.environ if environ is None else environ
        return cls(
            enabled=_env_bool(env, "SINCH_FAX_ENABLED", False),
            project_id=env.get("SINCH_FAX_PROJECT_ID", "").strip(),
            service_id=env.get("SINCH_FAX_SERVICE_ID", "").strip(),
            auth_method=env.get("SINCH_FAX_AUTH_METHOD", AUTH_BASIC).strip().lower() or AUTH_BASIC,
            api_key=env.get("SINCH_FAX_API_KEY", "").strip(),
            api_secret_encrypted=env.get("SINCH_FAX_API_SECRET", "").strip(),
            oauth_token_encrypted=env.get("SINCH_FAX_OAUTH_TOKEN", "").strip(),
            webhook_secret_encrypted=env.get("SINCH_FAX_WEBHOOK_SECRET", "").strip(),
            encryption_key=env.get("SINCH_FAX_ENCRYPTION_KEY", "").strip(),
            region=env.get("SINCH_FAX_REGION", "global").strip() or "global",
            file_storage_path=env.get("SINCH_FAX_FILE_STORAGE_PATH", "").strip(),
            site_dir=env.get("SITE_DIR", ".").strip() or ".",
            default_retry_count=_env_int(env, "SINCH_FAX_DEFAULT_RETRY_COUNT", 3),
            status_polling_enabled=_env_bool(env, "SINCH_FAX_ENABLE_STATUS_POLLING", False),
            webhooks_enabled=_env_bool(env, "SINCH_FAX_ENABLE_WEBHOOKS", True),
            incoming_polling_enabled=_env_bool(env, "SINCH_FAX_ENABLE_INCOMING_POLLING", False),
            site_addr=env.get("SITE_ADDR", "").strip(),
            webroot=env.get("WEBROOT", "").strip(),
            database_url=env.get("DATABASE_URL", "").strip(),
        )

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    def _decrypt(self, name: str, value: str) -> str:
        if not value:
            return ""
        if not self.encryption_key:
            return value
        try:
            return Fernet(self.encryption_key.encode()).decrypt(value.encode()).decode()
        except (InvalidToken, ValueError):
            logger.error(f"Could not decrypt {name}; check SINCH_FAX_ENCRYPTION_KEY")
            return ""

    def api_secret(self) -> str:
        return self._decrypt("API secret", self.api_secret_encrypted)

    def oauth_token(self) -> str:
        return self._decrypt("OAuth token", self.oauth_token_encrypted)

    def webhook_secret(self) -> str:
        return self._decrypt("webhook secret", self.webhook_secret_encrypted)

    # ------------------------------------------------------------------
    # Derived settings
    # ------------------------------------------------------------------

    @property
    def base_url(self) -> str:
        if self.region == "global":
            return "https://fax.api.sinch.com"
        return f"https://{self.region}.fax.api.sinch.com"

    @property
    def storage_path(self) -> str:
        if self.file_storage_path:
            return self.file_storage_path
        return os.path.join(self.site_dir, "documents", "sinch_faxes")

    def is_configured(self) -> bool:
        if not self.project_id:
            return False
        if self.auth_method == AUTH_BASIC:
            return bool(self.api_key) and bool(self.api_secret())
        if self.auth_method == AUTH_OAUTH:
            return bool(self.oauth_token())
        return False

    def has_public_callback_url(self) -> bool:
        return bool(self.site_addr) and not is_private_host(self.site_addr)

    def default_callback_url(self) -> str:
        return f"{self.site_addr.rstrip('/')}{self.webroot}{WEBHOOK_PATH}"


# ----------------------------------------------------------------------
# Persisted poll checkpoint
# ----------------------------------------------------------------------

def format_checkpoint(moment: datetime) -> str:
    """ISO-8601 UTC with a trailing Z, the format the provider uses."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


async def get_last_poll_time(db: AsyncSession) -> Optional[str]:
    result = await db.execute(select(FaxSetting).where(FaxSetting.name == LAST_POLL_TIME))
    setting = result.scalar_one_or_none()
    return setting.value if setting else None


async def set_last_poll_time(db: AsyncSession, value: str) -> None:
    result = await db.execute(select(FaxSetting).where(FaxSetting.name == LAST_POLL_TIME))
    setting = result.scalar_one_or_none()
    if setting is None:
        db.add(FaxSetting(name=LAST_POLL_TIME, value=value))
    else:
        setting.value = value
    await db.flush()
