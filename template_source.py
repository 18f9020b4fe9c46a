import logging

import fitz

from config import PDF_RASTER_ZOOM
from document_model import Template
from errors import InputValidationError, ResourceDecodeError

logger = logging.getLogger(__name__)

PNG = "image/png"
JPEG = "image/jpeg"
PDF = "application/pdf"
RASTER_TYPES = (PNG, JPEG)


def sniff_media_type(data: bytes) -> str | None:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return PNG
    if data.startswith(b"\xff\xd8\xff"):
        return JPEG
    if data.lstrip()[:5] == b"%PDF-":
        return PDF
    return None


def raster_size(data: bytes) -> tuple[int, int]:
    try:
        pix = fitz.Pixmap(data)
    except Exception as exc:
        raise ResourceDecodeError(f"Image could not be decoded: {exc}") from exc
    return pix.width, pix.height


def pdf_first_page_to_png(data: bytes, zoom: float = PDF_RASTER_ZOOM) -> bytes:
    """Rasterize page one of a PDF, used when the template is not an image."""
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise ResourceDecodeError(f"PDF template could not be opened: {exc}") from exc
    try:
        if len(doc) == 0:
            raise ResourceDecodeError("PDF template has no pages.")
        pix = doc[0].get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
        return pix.tobytes("png")
    finally:
        doc.close()


def load_template(data: bytes, filename: str | None = None) -> Template:
    if not data:
        raise InputValidationError("Upload a certificate template first.")
    media_type = sniff_media_type(data)
    if media_type == PDF:
        logger.info("Converting PDF template %s to a raster", filename or "<upload>")
        data = pdf_first_page_to_png(data)
        media_type = PNG
    if media_type not in RASTER_TYPES:
        raise InputValidationError("Template must be PNG, JPG/JPEG or PDF.")
    width, height = raster_size(data)
    return Template(raster=data, width=width, height=height, media_type=media_type)


def load_image(data: bytes, filename: str | None = None) -> tuple[bytes, int, int]:
    if sniff_media_type(data) not in RASTER_TYPES:
        raise InputValidationError(f"Only PNG/JPG allowed for logos: {filename or '<upload>'}")
    width, height = raster_size(data)
    return data, width, height
