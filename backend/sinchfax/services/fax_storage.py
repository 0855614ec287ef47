# backend/sinchfax/services/fax_storage.py
"""
Fax file storage

Fax documents are written to ``<storage dir>/<fax id>.pdf``. The path is
derived from the provider fax ID only, so a redelivered fax lands on the same
file instead of creating a second copy.
"""

import logging
import os
import re

from sinchfax.errors import StorageWriteFailed

logger = logging.getLogger(__name__)

DIR_MODE = 0o770
FILE_MODE = 0o660


def safe_file_stem(fax_id: str) -> str:
    """Strip anything that could escape the storage directory."""
    stem = re.sub(r"[^A-Za-z0-9_.-]", "_", str(fax_id)).lstrip(".")
    if not stem:
        raise StorageWriteFailed(f"Cannot derive a file name from fax id {fax_id!r}")
    return stem


class FaxStorage:
    def __init__(self, storage_path: str):
        self.storage_path = storage_path

    def path_for(self, fax_id: str, extension: str = ".pdf") -> str:
        return os.path.join(self.storage_path, f"{safe_file_stem(fax_id)}{extension}")

    def save(self, fax_id: str, content: bytes, extension: str = ".pdf") -> str:
        """
        Write fax content once and return its path.

        An existing non-empty file for the same fax is kept as is.

        Raises:
            StorageWriteFailed: directory or file could not be written
        """
        file_path = self.path_for(fax_id, extension)

        if os.path.exists(file_path) and os.path.getsize(file_path) > 0:
            logger.info(f"Fax {fax_id} already stored at {file_path}")
            return file_path

        try:
            os.makedirs(self.storage_path, mode=DIR_MODE, exist_ok=True)
            with open(file_path, "wb") as f:
                f.write(content)
            os.chmod(file_path, FILE_MODE)
        except OSError as e:
            logger.error(f"❌ Error saving fax {fax_id} to {file_path}: {e}")
            raise StorageWriteFailed(f"Could not write fax {fax_id}: {e}") from e

        logger.info(f"💾 Saved fax {fax_id} to {file_path} ({len(content)} bytes)")
        return file_path
