"""QR code scanning for automatic page identification."""

import io
import logging
from pathlib import Path
from typing import Optional, Union

from PIL import Image

from .qr_codec import QRPayload, decode

logger = logging.getLogger("scangrade.identity.qr")

# pyzbar requires the libzbar0 system library; without it QR scanning is disabled
PYZBAR_AVAILABLE = False
pyzbar = None

try:
    from pyzbar import pyzbar as _pyzbar
    pyzbar = _pyzbar
    PYZBAR_AVAILABLE = True
except (ImportError, OSError):
    logger.warning("pyzbar/libzbar not available; QR identification disabled")

IMAGE_SUFFIXES = {'.png', '.jpg', '.jpeg', '.gif', '.bmp', '.tiff', '.tif', '.webp'}

ImageSource = Union[str, Path, bytes]


def is_qr_scanning_available() -> bool:
    """Check if QR scanning is available."""
    return PYZBAR_AVAILABLE


def _open_image(source: ImageSource) -> Image.Image:
    if isinstance(source, (bytes, bytearray)):
        return Image.open(io.BytesIO(source))
    return Image.open(source)


def _decode_qr_text(img: Image.Image) -> list[str]:
    """Return the text of every QR symbol found in an image."""
    texts = []
    for obj in pyzbar.decode(img):
        if obj.type == 'QRCODE':
            try:
                texts.append(obj.data.decode('utf-8'))
            except UnicodeDecodeError:
                logger.debug("Skipping QR symbol with non UTF-8 data")
    return texts


def scan_qr_from_image(source: ImageSource) -> Optional[str]:
    """
    Scan a QR code from an image.

    Args:
        source: Path to the image file, or the encoded image bytes

    Returns:
        The decoded QR code data, or None if no QR code found.
        When several codes are present, an identity code is preferred.
    """
    if not PYZBAR_AVAILABLE:
        return None

    try:
        with _open_image(source) as img:
            texts = _decode_qr_text(img)
    except (OSError, ValueError) as e:
        logger.error("Error scanning QR from image: %s", e)
        return None

    for text in texts:
        if decode(text) is not None:
            return text
    return texts[0] if texts else None


def scan_qr_from_pdf(pdf_path: Path, max_pages: int = 3) -> Optional[str]:
    """
    Scan a QR code from a PDF file (checks first few pages).

    Args:
        pdf_path: Path to the PDF file
        max_pages: How many leading pages to check

    Returns:
        The decoded QR code data, or None if no QR code found
    """
    if not PYZBAR_AVAILABLE:
        return None

    import fitz  # PyMuPDF

    try:
        doc = fitz.open(pdf_path)
    except (RuntimeError, ValueError, OSError) as e:
        logger.error("Error opening PDF for QR scan: %s", e)
        return None

    try:
        for page_num in range(min(max_pages, len(doc))):
            # Render at higher DPI for better QR detection
            mat = fitz.Matrix(200 / 72, 200 / 72)
            pix = doc[page_num].get_pixmap(matrix=mat)
            result = scan_qr_from_image(pix.tobytes("png"))
            if result:
                return result
        return None
    finally:
        doc.close()


def scan_qr_from_file(file_path: Path) -> Optional[str]:
    """
    Scan a QR code from any supported file type.

    Args:
        file_path: Path to the file (image or PDF)

    Returns:
        The decoded QR code data, or None if no QR code found
    """
    file_path = Path(file_path)
    suffix = file_path.suffix.lower()

    if suffix == '.pdf':
        return scan_qr_from_pdf(file_path)
    elif suffix in IMAGE_SUFFIXES:
        return scan_qr_from_image(file_path)
    else:
        # Try as image first
        result = scan_qr_from_image(file_path)
        if result:
            return result
        return scan_qr_from_pdf(file_path)


class QRReader:
    """Reads identity payloads from page images."""

    def read(self, image) -> tuple[Optional[str], Optional[QRPayload]]:
        """
        Read the raw QR text and its decoded payload from a page.

        Returns:
            (raw_text, payload). raw_text is None when no QR code was seen;
            payload is None when the code is not a recognized identity code.
        """
        if isinstance(image, (bytes, bytearray)):
            raw = scan_qr_from_image(image)
        else:
            raw = scan_qr_from_file(Path(image))
        if raw is None:
            return None, None
        return raw, decode(raw)
