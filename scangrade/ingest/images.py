"""Reading page images for oracle calls."""

import base64
import io
from pathlib import Path
from typing import Union

from PIL import Image

ImageRef = Union[str, Path, bytes]

# The Messages API rejects images above ~5MB; stay under with some margin
MAX_IMAGE_BYTES = 4_500_000
MAX_IMAGE_DIMENSION = 7500

MEDIA_TYPES = {
    '.png': 'image/png',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
}


def load_image_bytes(image: ImageRef) -> bytes:
    """Return the encoded bytes of an in-memory image or an image file."""
    if isinstance(image, (bytes, bytearray)):
        return bytes(image)
    with open(image, "rb") as f:
        return f.read()


def _compress_image_to_limit(img, max_bytes=MAX_IMAGE_BYTES, max_dimension=MAX_IMAGE_DIMENSION) -> bytes:
    """Compress a PIL Image to fit within size and dimension limits, returns JPEG bytes."""
    if img.mode in ('RGBA', 'P', 'LA'):
        img = img.convert('RGB')

    width, height = img.size
    if width > max_dimension or height > max_dimension:
        scale = min(max_dimension / width, max_dimension / height)
        img = img.resize((int(width * scale), int(height * scale)), Image.LANCZOS)

    for quality in [85, 70, 55, 40, 25]:
        buffer = io.BytesIO()
        img.save(buffer, format='JPEG', quality=quality, optimize=True)
        if buffer.tell() <= max_bytes:
            return buffer.getvalue()

    # Still too large: keep shrinking
    while True:
        width, height = img.size
        img = img.resize((int(width * 0.8), int(height * 0.8)), Image.LANCZOS)
        buffer = io.BytesIO()
        img.save(buffer, format='JPEG', quality=40, optimize=True)
        if buffer.tell() <= max_bytes:
            return buffer.getvalue()


def _is_oversized(data: bytes) -> bool:
    return len(data) > MAX_IMAGE_BYTES


def _needs_reencoding(image: ImageRef, data: bytes) -> bool:
    # TIFF scans are not accepted by the API; send them as JPEG
    if not isinstance(image, (bytes, bytearray)) and Path(image).suffix.lower() not in MEDIA_TYPES:
        return True
    return _is_oversized(data)


def get_image_as_base64(image: ImageRef) -> str:
    """Read an image and return it as a base64 string. Oversized images are re-encoded as JPEG."""
    data = load_image_bytes(image)
    if _needs_reencoding(image, data):
        data = _compress_image_to_limit(Image.open(io.BytesIO(data)))
    return base64.standard_b64encode(data).decode("utf-8")


def get_image_media_type(image: ImageRef) -> str:
    """Get the media type for an image. Large images become JPEG."""
    if isinstance(image, (bytes, bytearray)):
        if _is_oversized(image):
            return 'image/jpeg'
        head = bytes(image[:12])
        if head.startswith(b"\x89PNG"):
            return 'image/png'
        if head.startswith(b"GIF8"):
            return 'image/gif'
        if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
            return 'image/webp'
        return 'image/jpeg'

    path = Path(image)
    try:
        if path.stat().st_size > MAX_IMAGE_BYTES:
            return 'image/jpeg'
    except OSError:
        pass
    return MEDIA_TYPES.get(path.suffix.lower(), 'image/jpeg')
