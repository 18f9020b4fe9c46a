import json
import logging
import threading
from pathlib import Path
from typing import Any

import jwt as pyjwt
import uvicorn
from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ValidationError

import auth
from batch_export import export_batch, package_zip
from config import ARCHIVE_NAME, LAYOUT_DIR, PREVIEW_WIDTH, setup_logging
from document_model import DocumentModel
from errors import (
    CertificateError,
    CountMismatchError,
    ExportError,
    InputValidationError,
    ResourceDecodeError,
)
from fonts import PreviewMeasurer
from preview_driver import PreviewDriver
from template_source import load_image, load_template

setup_logging()
logger = logging.getLogger(__name__)

DEFAULT_LAYOUT = "layout.json"

app = FastAPI(title="Certificate Batch API")

# ── CORS ──────────────────────────────────────────────────────────────────────
# Allow the Vite dev server to reach the API during development.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── AUTH MIDDLEWARE ────────────────────────────────────────────────────────────
@app.middleware("http")
async def _auth_middleware(request: Request, call_next):
    """Reject unauthenticated calls to /api/* (except public endpoints)."""
    if not auth.requires_auth(request.url.path, request.method):
        return await call_next(request)

    try:
        request.state.user = auth.authenticate(request.headers.get("Authorization"))
    except pyjwt.ExpiredSignatureError:
        return JSONResponse(
            status_code=401,
            content={"detail": "Token has expired."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    except pyjwt.PyJWTError as exc:
        return JSONResponse(
            status_code=401,
            content={"detail": f"Invalid token: {exc}"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    return await call_next(request)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "message": "Request validation failed.",
            "detail": exc.errors(),
            "body": exc.body,
        },
    )


# reportlab font registration is process-global; one batch at a time.
_export_lock = threading.Lock()


class CountCheckResponse(BaseModel):
    rows: int
    mismatches: list[str]


def to_http_error(exc: CertificateError) -> HTTPException:
    if isinstance(exc, CountMismatchError):
        return HTTPException(
            status_code=409,
            detail={
                "message": "Value counts differ between fields. Resend with allow_count_mismatch=true to continue.",
                "mismatches": [str(m) for m in exc.mismatches],
            },
        )
    if isinstance(exc, (InputValidationError, ResourceDecodeError)):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, ExportError):
        return HTTPException(status_code=500, detail={"message": "Certificate generation failed.", "error": str(exc)})
    return HTTPException(status_code=500, detail=str(exc))


def parse_layout(layout_json: str | None) -> DocumentModel:
    if not layout_json:
        return DocumentModel()
    try:
        return DocumentModel.from_layout(json.loads(layout_json))
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid layout JSON: {exc}") from exc
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail={"message": "Layout validation failed.", "errors": exc.errors(include_url=False)},
        ) from exc


def build_model(
    layout_json: str | None,
    template: UploadFile | None,
    images: list[UploadFile] | None,
) -> DocumentModel:
    """Layout JSON plus uploads; the n-th uploaded image fills the n-th layout image."""
    model = parse_layout(layout_json)
    if template is None:
        raise InputValidationError("Upload a certificate template first.")
    model.set_template(load_template(template.file.read(), template.filename))
    for index, upload in enumerate(images or []):
        raster, width, height = load_image(upload.file.read(), upload.filename)
        if index < len(model.images):
            model.update_image(index, {"raster": raster, "natural_width": width, "natural_height": height})
        else:
            model.add_image(raster, width, height, name=upload.filename or "")
    return model


def read_font(font_file: UploadFile | None) -> bytes | None:
    if font_file is None:
        return None
    return font_file.file.read() or None


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# ── LAYOUTS ───────────────────────────────────────────────────────────────────


def resolve_layout_path(name: str | None) -> tuple[Path, str]:
    cleaned = Path(name).name if name else DEFAULT_LAYOUT
    if not cleaned.lower().endswith(".json"):
        cleaned = f"{cleaned}.json"
    return LAYOUT_DIR / cleaned, cleaned


@app.get("/api/layouts")
def list_layouts() -> dict[str, list[str]]:
    files: list[str] = []
    if LAYOUT_DIR.exists():
        files.extend(sorted(path.name for path in LAYOUT_DIR.glob("*.json")))
    return {"files": files}


@app.get("/api/layout")
def get_layout(name: str | None = None) -> Any:
    target_path, display_name = resolve_layout_path(name)
    if not target_path.exists():
        if name is None:
            return DocumentModel().to_layout()
        raise HTTPException(status_code=404, detail=f"Layout not found: {display_name}")
    try:
        return json.loads(target_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=500, detail=f"Invalid JSON in {display_name}: {exc}") from exc


@app.post("/api/layout")
def save_layout(payload: dict[str, Any], name: str | None = None) -> dict[str, str]:
    target_path, display_name = resolve_layout_path(name)
    try:
        layout = DocumentModel.from_layout(payload).to_layout()
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail={"message": "Layout validation failed.", "errors": exc.errors(include_url=False)},
        ) from exc
    target_path.parent.mkdir(parents=True, exist_ok=True)
    target_path.write_text(json.dumps(layout, indent=2), encoding="utf-8")
    return {"message": f"Saved: {display_name}"}


# ── CERTIFICATES ──────────────────────────────────────────────────────────────


@app.post("/api/count-check")
def count_check(layout_json: str | None = Form(None)) -> CountCheckResponse:
    model = parse_layout(layout_json)
    return CountCheckResponse(
        rows=model.row_count,
        mismatches=[str(m) for m in model.count_mismatches()],
    )


@app.post("/api/preview")
def preview(
    template: UploadFile | None = File(None),
    layout_json: str | None = Form(None),
    images: list[UploadFile] | None = File(None),
    font_file: UploadFile | None = File(None),
    row: int = Form(0),
    width: float = Form(PREVIEW_WIDTH),
) -> Response:
    try:
        model = build_model(layout_json, template, images)
        driver = PreviewDriver(model=model, measurer=PreviewMeasurer(read_font(font_file)), rendered_width=width)
        driver.set_preview_row(row)
        png = driver.render_png()
    except CertificateError as exc:
        raise to_http_error(exc) from exc
    return Response(content=png, media_type="image/png")


@app.post("/api/generate")
def generate(
    template: UploadFile | None = File(None),
    layout_json: str | None = Form(None),
    images: list[UploadFile] | None = File(None),
    font_file: UploadFile | None = File(None),
    allow_count_mismatch: bool = Form(False),
) -> Response:
    try:
        model = build_model(layout_json, template, images)
        with _export_lock:
            artifacts = export_batch(
                model,
                custom_font=read_font(font_file),
                confirm_mismatch=lambda _mismatches: allow_count_mismatch,
            )
    except CertificateError as exc:
        raise to_http_error(exc) from exc
    logger.info("Generated %d certificates", len(artifacts))
    return Response(
        content=package_zip(artifacts),
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{ARCHIVE_NAME}"'},
    )


if __name__ == "__main__":
    uvicorn.run("app_server:app", host="127.0.0.1", port=8000)
