import os
import uuid
from typing import Optional

from fastapi import UploadFile

from ..config import settings
from ..errors import ValidationError
from .provider import StorageProvider


def get_storage() -> StorageProvider:
    """
    Storage provider dependency.
    Blob storage when STORAGE_PROVIDER=blob and Azure is configured, local filesystem otherwise.
    """
    if settings.storage_provider == "blob" and settings.azure_blob_connection and settings.azure_blob_container:
        from .blob_provider import BlobStorageProvider
        return BlobStorageProvider()
    from .local_provider import LocalStorageProvider
    return LocalStorageProvider()


def generate_key(area: str, original_name: Optional[str]) -> str:
    """`<area>/<uuid4><ext>`: unique per upload, not content-addressed."""
    ext = os.path.splitext(original_name or "")[1].lower()[:16]
    return f"{area}/{uuid.uuid4().hex}{ext}"


def upload_size(file: UploadFile) -> int:
    """Size of an upload, checked against MAX_UPLOAD_BYTES."""
    f = file.file
    f.seek(0, 2)
    size = f.tell()
    f.seek(0)
    if size > settings.max_upload_bytes:
        raise ValidationError("File too large")
    return size
