import io
import logging
import os
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger("uvicorn.error")

IMAGE_MAX_DIMENSION = int(os.getenv("IMAGE_MAX_DIMENSION", "1024"))
IMAGE_JPEG_QUALITY = int(os.getenv("IMAGE_JPEG_QUALITY", "85"))


@dataclass(frozen=True)
class PreparedImage:
    data: bytes
    mime_type: str


def prepare_image(image_bytes: bytes, mime_type: str) -> PreparedImage:
    """Shrink to fit inside IMAGE_MAX_DIMENSION and re-encode as progressive JPEG.

    Never enlarges. If the bytes cannot be decoded the original upload is returned.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            img = ImageOps.exif_transpose(img)
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            img.thumbnail((IMAGE_MAX_DIMENSION, IMAGE_MAX_DIMENSION))
            buf = io.BytesIO()
            img.save(buf, format="JPEG", quality=IMAGE_JPEG_QUALITY, optimize=True, progressive=True)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.warning("image_compress_failed size=%s reason=%s", len(image_bytes), str(exc))
        return PreparedImage(data=image_bytes, mime_type=mime_type)
    compressed = buf.getvalue()
    logger.info("image_compressed original=%s compressed=%s", len(image_bytes), len(compressed))
    return PreparedImage(data=compressed, mime_type="image/jpeg")
