import hashlib
import io
import logging

import fitz
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont

from errors import ResourceDecodeError
from text_layout import FontPair

logger = logging.getLogger(__name__)

FONT_FAMILIES = ("Helvetica", "Times", "Courier", "Custom")
DEFAULT_FAMILY = "Helvetica"
CUSTOM_FAMILY = "Custom"

# Base-14 names as reportlab knows them.
PDF_FAMILIES: dict[str, FontPair] = {
    "Helvetica": FontPair("Helvetica", "Helvetica-Bold"),
    "Times": FontPair("Times-Roman", "Times-Bold"),
    "Courier": FontPair("Courier", "Courier-Bold"),
}

# PyMuPDF built-in codes for the same faces.
PREVIEW_FAMILIES: dict[str, FontPair] = {
    "Helvetica": FontPair("helv", "hebo"),
    "Times": FontPair("tiro", "tibo"),
    "Courier": FontPair("cour", "cobo"),
}
PREVIEW_CUSTOM_NAME = "custom"


def visible_text(text: str) -> str:
    """Replace every whitespace character with a plain space.

    Control characters such as newline and tab have a glyph width in some
    fonts and none in others, but both surfaces draw them as blank advance.
    """
    return "".join(" " if ch.isspace() else ch for ch in text)


def load_custom_font(data: bytes) -> str:
    """Register *data* (a .ttf/.otf binary) with reportlab and return its font name."""
    font_name = f"CustomFont-{hashlib.sha1(data).hexdigest()[:10]}"
    if font_name in pdfmetrics.getRegisteredFontNames():
        return font_name
    try:
        pdfmetrics.registerFont(TTFont(font_name, io.BytesIO(data)))
    except Exception as exc:
        raise ResourceDecodeError(f"Custom font could not be loaded: {exc}") from exc
    logger.info("Registered custom font %s", font_name)
    return font_name


def _fallback_pair(families: dict[str, FontPair], family: str) -> FontPair:
    if family not in families and family != CUSTOM_FAMILY:
        logger.warning("Unknown font family '%s'. Falling back to '%s'.", family, DEFAULT_FAMILY)
    return families[family] if family in families else families[DEFAULT_FAMILY]


class ReportLabMeasurer:
    """Glyph-metric widths for the final PDF, in points (template pixels)."""

    def __init__(self, custom_font: bytes | None = None) -> None:
        self.custom_font_name: str | None = None
        if custom_font:
            try:
                self.custom_font_name = load_custom_font(custom_font)
            except ResourceDecodeError as exc:
                logger.warning("%s Custom font disabled; using %s.", exc, DEFAULT_FAMILY)

    def font_pair(self, family: str) -> FontPair:
        # A custom upload is a single file, so it serves both weights.
        if family == CUSTOM_FAMILY and self.custom_font_name:
            return FontPair(self.custom_font_name, self.custom_font_name)
        return _fallback_pair(PDF_FAMILIES, family)

    def width(self, text: str, font: str, size: float) -> float:
        return pdfmetrics.stringWidth(visible_text(text), font, size)


class PreviewMeasurer:
    """Widths as the PyMuPDF preview raster lays them out."""

    def __init__(self, custom_font: bytes | None = None) -> None:
        self._fonts: dict[str, fitz.Font] = {}
        self.custom_font: bytes | None = None
        if custom_font:
            try:
                self._fonts[PREVIEW_CUSTOM_NAME] = fitz.Font(fontbuffer=custom_font)
                self.custom_font = custom_font
            except Exception as exc:
                logger.warning("Custom font unusable in preview (%s); using %s.", exc, DEFAULT_FAMILY)

    def font_pair(self, family: str) -> FontPair:
        if family == CUSTOM_FAMILY and self.custom_font is not None:
            return FontPair(PREVIEW_CUSTOM_NAME, PREVIEW_CUSTOM_NAME)
        return _fallback_pair(PREVIEW_FAMILIES, family)

    def _font(self, name: str) -> fitz.Font:
        font = self._fonts.get(name)
        if font is None:
            font = fitz.Font(fontname=name)
            self._fonts[name] = font
        return font

    def width(self, text: str, font: str, size: float) -> float:
        return self._font(font).text_length(visible_text(text), fontsize=size)
