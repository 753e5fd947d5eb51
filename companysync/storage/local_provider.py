"""
Local filesystem storage provider.
Files are written under UPLOAD_DIR and served by the app at /uploads.
"""
import shutil
from typing import Optional, BinaryIO
from pathlib import Path
from urllib.parse import quote

from ..config import settings
from ..logging import get_logger
from .provider import StorageProvider

log = get_logger("companysync.storage")

URL_PREFIX = "/uploads"


class LocalStorageProvider(StorageProvider):
    name = "local"

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.upload_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        # Drop empty, "." and ".." segments so the key stays under base_dir
        parts = [p for p in key.replace("\\", "/").split("/") if p not in ("", ".", "..")]
        return self.base_dir.joinpath(*parts)

    def save(self, stream: BinaryIO, key: str, content_type: Optional[str] = None) -> str:
        path = self._get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            shutil.copyfileobj(stream, f)
        return f"{URL_PREFIX}/{quote(key.lstrip('/'))}"

    def get_download_url(self, key: str, expires_s: int = 3600) -> Optional[str]:
        if self._get_path(key).exists():
            return f"{URL_PREFIX}/{quote(key.lstrip('/'))}"
        return None

    def exists(self, key: str) -> bool:
        return self._get_path(key).exists()

    def delete(self, key: str) -> None:
        path = self._get_path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            # The row is already deleted at this point
            log.warning("storage.delete_failed", key=key, error=str(e))
