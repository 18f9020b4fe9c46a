import argparse
import csv
import json
import logging
import sys
from pathlib import Path

from batch_export import ExportProgress, export_batch, write_archive
from config import ARCHIVE_NAME, OUTPUT_DIR, PREVIEW_WIDTH, setup_logging
from document_model import CountMismatch, DocumentModel
from errors import CertificateError
from fonts import PreviewMeasurer
from preview_driver import PreviewDriver
from template_source import load_image, load_template

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Batch-produce certificates from a template image and per-recipient values."
    )
    parser.add_argument("--template", required=True, help="Template PNG/JPG (or PDF, first page).")
    parser.add_argument("--layout", help="Layout JSON (fields, description, images).")
    parser.add_argument("--csv", dest="csv_path", help="CSV file supplying field values.")
    parser.add_argument(
        "--columns",
        help="Comma-separated CSV columns mapped to field1, field2, ... in order.",
    )
    parser.add_argument("--font-path", help="Optional TTF/OTF used by the 'Custom' font family.")
    parser.add_argument(
        "--image",
        action="append",
        default=[],
        help="Logo PNG/JPG placed at the template centre. Repeatable.",
    )
    parser.add_argument(
        "--output",
        default=str(OUTPUT_DIR / ARCHIVE_NAME),
        help="Output ZIP path.",
    )
    parser.add_argument(
        "--preview-row",
        type=int,
        default=None,
        help="Render a preview PNG of this row instead of exporting.",
    )
    parser.add_argument("--preview-out", default="preview.png", help="Preview PNG path.")
    parser.add_argument(
        "--preview-width",
        type=float,
        default=PREVIEW_WIDTH,
        help="Preview raster width in pixels.",
    )
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Continue without asking when value counts differ between fields.",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging.")
    return parser.parse_args(argv)


def load_layout(path: Path | None) -> DocumentModel:
    if path is None:
        return DocumentModel()
    data = json.loads(path.read_text(encoding="utf-8"))
    model = DocumentModel.from_layout(data)
    base_dir = path.parent
    for index, image in enumerate(model.images):
        if image.source and not image.raster:
            source = Path(image.source)
            if not source.is_absolute():
                source = base_dir / source
            raster, width, height = load_image(source.read_bytes(), source.name)
            logger.info("Loaded layout image %s (%dx%d)", source, width, height)
            model.update_image(
                index,
                {"raster": raster, "natural_width": width, "natural_height": height},
            )
    return model


def apply_csv_columns(model: DocumentModel, csv_path: Path, columns: list[str]) -> None:
    with csv_path.open("r", newline="", encoding="utf-8-sig") as f:
        rows = list(csv.DictReader(f))
    if not rows:
        raise ValueError("CSV has no data rows.")
    missing = [column for column in columns if column not in rows[0]]
    if missing:
        raise ValueError(f"CSV is missing column(s): {', '.join(missing)}")
    if len(columns) > len(model.dynamic_fields):
        model.set_field_count(len(columns))
    for index, column in enumerate(columns):
        values = "\n".join((row.get(column) or "").strip() for row in rows)
        model.update_field(index, {"values_text": values})


def confirm_on_terminal(mismatches: list[CountMismatch]) -> bool:
    for mismatch in mismatches:
        print(f"[WARN] {mismatch}. Missing values fall back to the first value.")
    answer = input("Continue? [y/N] ")
    return answer.strip().lower() in {"y", "yes"}


def print_progress(progress: ExportProgress) -> None:
    print(f"  [{progress.current}/{progress.total}] {progress.name}")


def run(args: argparse.Namespace) -> int:
    template_path = Path(args.template)
    model = load_layout(Path(args.layout) if args.layout else None)

    if args.csv_path:
        if not args.columns:
            raise ValueError("--csv requires --columns.")
        columns = [c.strip() for c in args.columns.split(",") if c.strip()]
        apply_csv_columns(model, Path(args.csv_path), columns)

    custom_font = Path(args.font_path).read_bytes() if args.font_path else None

    driver = PreviewDriver(
        model=model,
        measurer=PreviewMeasurer(custom_font),
        rendered_width=args.preview_width,
    )
    driver.load_template(load_template(template_path.read_bytes(), template_path.name))
    for image_path in args.image:
        path = Path(image_path)
        driver.add_image(path.read_bytes(), path.name)

    if args.preview_row is not None:
        driver.set_preview_row(args.preview_row)
        out = Path(args.preview_out)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(driver.render_png())
        print(f"Wrote preview: {out}")
        return 0

    confirm = (lambda _mismatches: True) if args.yes else confirm_on_terminal
    print(f"Generating {model.row_count} certificates...")
    artifacts = export_batch(
        model,
        custom_font=custom_font,
        confirm_mismatch=confirm,
        on_progress=print_progress,
    )
    zip_path = write_archive(artifacts, Path(args.output))
    print(f"Done! Generated {len(artifacts)} certificates.")
    print(f"Created ZIP archive: {zip_path}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.debug)
    try:
        return run(args)
    except (CertificateError, ValueError, OSError) as exc:
        print(f"[FAIL] {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
