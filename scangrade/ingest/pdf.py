"""Split scanned PDFs into one image per page."""

import logging
from pathlib import Path

import fitz  # PyMuPDF

logger = logging.getLogger("scangrade.ingest.pdf")

# 1.5x render is a good balance of legibility and upload size
RENDER_SCALE = 1.5


def split_pdf_pages(pdf_path: Path, scale: float = RENDER_SCALE) -> list[bytes]:
    """
    Render every page of a PDF to PNG bytes.

    Args:
        pdf_path: Path to the PDF file
        scale: Render zoom relative to 72 dpi

    Returns:
        One PNG per page, in page order
    """
    pages = []
    doc = fitz.open(pdf_path)
    try:
        mat = fitz.Matrix(scale, scale)
        for page in doc:
            pix = page.get_pixmap(matrix=mat)
            pages.append(pix.tobytes("png"))
    finally:
        doc.close()

    logger.info("Split %s into %d page image(s)", Path(pdf_path).name, len(pages))
    return pages


def add_pdf_to_queue(queue, pdf_path: Path) -> list[str]:
    """Append each page of a PDF to a batch queue as its own pending item."""
    pdf_path = Path(pdf_path)
    ids = []
    for index, png in enumerate(split_pdf_pages(pdf_path), start=1):
        ids.append(queue.add_image(png, filename=f"{pdf_path.stem}-p{index}.png"))
    return ids
