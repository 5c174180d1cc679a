"""
Image preparation for vision model requests.
"""

import base64
import io
import logging
from typing import NamedTuple

from PIL import Image, UnidentifiedImageError


logger = logging.getLogger(__name__)

MAX_DIMENSION = 1568
JPEG_QUALITY = 85
SUPPORTED_FORMATS = {
    'JPEG': 'image/jpeg',
    'PNG': 'image/png',
    'GIF': 'image/gif',
    'WEBP': 'image/webp',
}


class PreparedImage(NamedTuple):
    data: str
    mime_type: str


def prepare_image(image_bytes: bytes, mime_type: str = 'image/jpeg') -> PreparedImage:
    """
    Encode an image for a vision request.

    Images within the size limit in a format every provider accepts are sent
    unchanged. Others are converted to RGB, shrunk to MAX_DIMENSION and
    re-encoded as JPEG. Bytes Pillow cannot read are passed through as given.

    Args:
        image_bytes: Raw image file contents
        mime_type: MIME type reported by the uploader

    Returns:
        PreparedImage with base64 data and the MIME type to declare
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            image_format = img.format
            if image_format in SUPPORTED_FORMATS and max(img.size) <= MAX_DIMENSION:
                return PreparedImage(_encode(image_bytes), SUPPORTED_FORMATS[image_format])

            if img.mode != 'RGB':
                img = img.convert('RGB')

            if max(img.size) > MAX_DIMENSION:
                img.thumbnail((MAX_DIMENSION, MAX_DIMENSION), Image.Resampling.LANCZOS)

            buffer = io.BytesIO()
            img.save(buffer, format='JPEG', quality=JPEG_QUALITY)
            logger.debug(f"Re-encoded {image_format} image as JPEG {img.size}")
            return PreparedImage(_encode(buffer.getvalue()), 'image/jpeg')

    except (UnidentifiedImageError, OSError,
            Image.DecompressionBombError, Image.DecompressionBombWarning) as e:
        logger.warning(f"Could not read image, sending it unchanged: {e}")
        return PreparedImage(_encode(image_bytes), mime_type or 'image/jpeg')


def _encode(data: bytes) -> str:
    return base64.b64encode(data).decode('utf-8')
