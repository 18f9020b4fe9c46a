import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

ROOT_DIR = Path(__file__).resolve().parent

# ── ENVIRONMENT ───────────────────────────────────────────────────────────────
OUTPUT_DIR = Path(os.environ.get("CERTBATCH_OUTPUT_DIR", str(ROOT_DIR / "out")))
LAYOUT_DIR = Path(os.environ.get("CERTBATCH_LAYOUT_DIR", str(ROOT_DIR / "layouts")))
PREVIEW_WIDTH = int(os.environ.get("CERTBATCH_PREVIEW_WIDTH", "1000"))
LOG_LEVEL = os.environ.get("CERTBATCH_LOG_LEVEL", "INFO").upper()

# ── LAYOUT CONSTANTS ──────────────────────────────────────────────────────────
LINE_HEIGHT_FACTOR = 1.35
MIN_CONTENT_WIDTH = 10.0
MIN_FIELD_COUNT = 1
MAX_FIELD_COUNT = 12
NUDGE_STEP = 1
NUDGE_STEP_LARGE = 10

# Relative width divergence accepted between the preview and PDF measurers.
MEASURER_TOLERANCE = 0.02

# ── OUTPUT ────────────────────────────────────────────────────────────────────
ARCHIVE_NAME = "certificates.zip"
DEFAULT_FILENAME = "certificate"
MAX_FILENAME_LENGTH = 120
PDF_RASTER_ZOOM = 2.0

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(debug: bool = False) -> logging.Logger:
    log = logging.getLogger()
    if getattr(log, "_certbatch_configured", False):
        return log

    level = logging.DEBUG if debug else getattr(logging, LOG_LEVEL, logging.INFO)
    log.setLevel(level)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    log.addHandler(handler)

    setattr(log, "_certbatch_configured", True)
    log.debug("Logging initialized. Debug=%s", debug)
    return log
