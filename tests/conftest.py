"""
Shared fixtures: a deterministic measurer and in-memory raster templates.
"""

import os
import sys

import fitz
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from document_model import DocumentModel  # noqa: E402
from template_source import load_template  # noqa: E402
from text_layout import FontPair  # noqa: E402


class FixedMeasurer:
    """Every character advances size / 2, so at size 2 one char is one unit."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, float]] = []

    def font_pair(self, family: str) -> FontPair:
        return FontPair("R", "B")

    def width(self, text: str, font: str, size: float) -> float:
        self.calls.append((text, font, size))
        return len(text) * size / 2


def make_png(width: int, height: int, color: tuple[int, int, int] = (255, 255, 255)) -> bytes:
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, width, height), False)
    pix.set_rect(pix.irect, color)
    return pix.tobytes("png")


@pytest.fixture
def measurer() -> FixedMeasurer:
    return FixedMeasurer()


@pytest.fixture
def template_png() -> bytes:
    return make_png(800, 600)


@pytest.fixture
def logo_png() -> bytes:
    return make_png(100, 50, (200, 30, 30))


@pytest.fixture
def model(template_png: bytes) -> DocumentModel:
    doc = DocumentModel()
    doc.set_template(load_template(template_png, "template.png"))
    return doc
