import io
import logging
import re
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator

from reportlab.lib.colors import Color
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from config import ARCHIVE_NAME, DEFAULT_FILENAME, MAX_FILENAME_LENGTH
from document_model import CountMismatch, DocumentModel
from errors import CountMismatchError, ExportError, InputValidationError
from fonts import ReportLabMeasurer
from page_composer import compose_page
from text_layout import DrawCommand, DrawImage, DrawText, TextMeasurer

logger = logging.getLogger(__name__)

_FORBIDDEN_CHARS = re.compile(r'[\\/:*?"<>|]')
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class Artifact:
    name: str
    data: bytes


@dataclass(frozen=True)
class ExportProgress:
    current: int
    total: int
    name: str = ""


ProgressCallback = Callable[[ExportProgress], None]
ConfirmCallback = Callable[[list[CountMismatch]], bool]


def sanitize_filename(name: str | None) -> str:
    cleaned = _FORBIDDEN_CHARS.sub("_", name or DEFAULT_FILENAME)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()[:MAX_FILENAME_LENGTH]
    return cleaned or DEFAULT_FILENAME


def artifact_name(record: dict[str, str], row: int) -> str:
    return f"{sanitize_filename(record.get('field1') or f'certificate-{row + 1}')}.pdf"


def draw_commands(c: canvas.Canvas, commands: list[DrawCommand]) -> None:
    # One reader per distinct raster.
    images: dict[bytes, ImageReader] = {}
    for cmd in commands:
        if isinstance(cmd, DrawImage):
            reader = images.get(cmd.raster)
            if reader is None:
                reader = ImageReader(io.BytesIO(cmd.raster))
                images[cmd.raster] = reader
            c.drawImage(reader, cmd.x, cmd.y, width=cmd.width, height=cmd.height, mask="auto")
        elif isinstance(cmd, DrawText):
            c.setFont(cmd.font, cmd.size)
            c.setFillColor(Color(*cmd.color))
            c.drawString(cmd.x, cmd.y, cmd.text)


def render_certificate(model: DocumentModel, record: dict[str, str], measurer: TextMeasurer) -> bytes:
    template = model.template
    if template is None:
        raise InputValidationError("Upload a certificate template first.")
    packet = io.BytesIO()
    c = canvas.Canvas(packet, pagesize=(template.width, template.height))
    draw_commands(c, compose_page(model, record, measurer))
    c.showPage()
    c.save()
    return packet.getvalue()


def validate_export(model: DocumentModel) -> None:
    if model.template is None:
        raise InputValidationError("Upload a PNG/JPG template first.")
    if model.row_count == 0:
        raise InputValidationError("Please provide at least one entry in Field 1.")


def iter_certificates(
    model: DocumentModel,
    measurer: TextMeasurer,
    on_progress: ProgressCallback | None = None,
) -> Iterator[Artifact]:
    """Yield one PDF per row, strictly in row order.

    Any failure aborts the iteration with ExportError naming the row.
    """
    validate_export(model)
    total = model.row_count
    for row in range(total):
        record = model.build_record(row)
        try:
            data = render_certificate(model, record, measurer)
        except Exception as exc:
            logger.error("Row %d failed: %s", row + 1, exc)
            raise ExportError(row, exc) from exc
        artifact = Artifact(name=artifact_name(record, row), data=data)
        logger.info("[%d/%d] %s", row + 1, total, artifact.name)
        if on_progress is not None:
            on_progress(ExportProgress(current=row + 1, total=total, name=artifact.name))
        yield artifact


def export_batch(
    model: DocumentModel,
    custom_font: bytes | None = None,
    confirm_mismatch: ConfirmCallback | None = None,
    on_progress: ProgressCallback | None = None,
    measurer: TextMeasurer | None = None,
) -> list[Artifact]:
    """Render every row to a PDF and return them all, or raise with nothing."""
    validate_export(model)
    mismatches = model.count_mismatches()
    if mismatches:
        for mismatch in mismatches:
            logger.warning("%s; missing values fall back to the first value.", mismatch)
        if confirm_mismatch is None or not confirm_mismatch(mismatches):
            raise CountMismatchError(mismatches)
    if measurer is None:
        measurer = ReportLabMeasurer(custom_font)
    return list(iter_certificates(model, measurer, on_progress))


def unique_names(artifacts: list[Artifact]) -> list[str]:
    seen: dict[str, int] = {}
    names = []
    for artifact in artifacts:
        count = seen.get(artifact.name, 0) + 1
        seen[artifact.name] = count
        if count == 1:
            names.append(artifact.name)
        else:
            stem, dot, ext = artifact.name.rpartition(".")
            names.append(f"{stem}-{count}.{ext}" if dot else f"{artifact.name}-{count}")
    return names


def package_zip(artifacts: list[Artifact]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zipf:
        for name, artifact in zip(unique_names(artifacts), artifacts):
            zipf.writestr(name, artifact.data)
    return buffer.getvalue()


def write_archive(artifacts: list[Artifact], output_path: Path | None = None) -> Path:
    if output_path is None:
        output_path = Path(ARCHIVE_NAME)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(package_zip(artifacts))
    return output_path
