from typing import BinaryIO, Optional


class StorageProvider:
    """Write-once blob storage addressed by generated keys."""

    name = "base"

    def save(self, stream: BinaryIO, key: str, content_type: Optional[str] = None) -> str:
        """Store `stream` under `key` and return a retrievable URL."""
        raise NotImplementedError

    def get_download_url(self, key: str, expires_s: int = 3600) -> Optional[str]:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError
