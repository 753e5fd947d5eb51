"""Avatar image validation and normalization."""
import io

from fastapi import UploadFile
from PIL import Image, ImageOps, UnidentifiedImageError

from ..errors import ValidationError
from ..logging import get_logger

log = get_logger("companysync.avatars")

AVATAR_SIZE = (256, 256)


def normalize_avatar(upload: UploadFile) -> io.BytesIO:
    """
    Decode an uploaded image and re-encode it as a PNG avatar.

    The EXIF orientation is applied, the image is converted to RGB (RGBA when
    it has transparency) and shrunk to fit AVATAR_SIZE.

    Raises:
        ValidationError: the upload is not an image Pillow can decode
    """
    if not (upload.content_type or "").startswith("image/"):
        raise ValidationError("File must be an image")
    try:
        with Image.open(upload.file) as src:
            im = ImageOps.exif_transpose(src)
            mode = "RGBA" if "A" in im.getbands() else "RGB"
            if im.mode != mode:
                im = im.convert(mode)
            im.thumbnail(AVATAR_SIZE)
            out = io.BytesIO()
            im.save(out, format="PNG")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        log.info("avatar.rejected", filename=upload.filename, error=str(e))
        raise ValidationError("File must be an image")
    out.seek(0)
    return out
