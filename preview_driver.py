import logging
from typing import Any, Callable, Literal

import fitz

from config import NUDGE_STEP, NUDGE_STEP_LARGE, PREVIEW_WIDTH
from document_model import DocumentModel, Template, round_px
from errors import InputValidationError
from fonts import PREVIEW_CUSTOM_NAME, PreviewMeasurer
from page_composer import compose_page
from template_source import load_image
from text_layout import DrawCommand, DrawImage, DrawText

logger = logging.getLogger(__name__)

SelectMode = Literal["field", "description", "image"]
RedrawListener = Callable[[list[DrawCommand]], None]

ARROW_KEYS: dict[str, tuple[int, int]] = {
    "ArrowLeft": (-1, 0),
    "ArrowRight": (1, 0),
    # Template space has its origin bottom-left, so "up" grows y.
    "ArrowUp": (0, 1),
    "ArrowDown": (0, -1),
}
HIGHLIGHT_COLOR = (1.0, 0.23, 0.23)


def rasterize(
    commands: list[DrawCommand],
    width: float,
    height: float,
    custom_font: bytes | None = None,
    highlight_key: str | None = None,
) -> bytes:
    """Execute preview draw commands on a PyMuPDF page and return it as PNG."""
    doc = fitz.open()
    try:
        page = doc.new_page(width=width, height=height)
        if custom_font:
            page.insert_font(fontname=PREVIEW_CUSTOM_NAME, fontbuffer=custom_font)
        for cmd in commands:
            if isinstance(cmd, DrawImage):
                rect = fitz.Rect(cmd.x, cmd.y, cmd.x + cmd.width, cmd.y + cmd.height)
                if rect.is_empty or not rect.intersects(page.rect):
                    continue
                page.insert_image(rect, stream=cmd.raster, keep_proportion=False)
                if highlight_key and cmd.key == highlight_key:
                    page.draw_rect(rect + (-2, -2, 2, 2), color=HIGHLIGHT_COLOR, width=2)
            elif isinstance(cmd, DrawText):
                page.insert_text(
                    fitz.Point(cmd.x, cmd.y),
                    cmd.text,
                    fontsize=cmd.size,
                    fontname=cmd.font,
                    color=cmd.color,
                )
        return page.get_pixmap(alpha=False).tobytes("png")
    finally:
        doc.close()


class PreviewDriver:
    """Pointer and keyboard handling over a document model, with redraw on change.

    Every mutation re-runs layout against the preview measurer and hands the
    fresh draw commands to the subscribed listeners; the latest model state
    always wins.
    """

    def __init__(
        self,
        model: DocumentModel | None = None,
        measurer: PreviewMeasurer | None = None,
        rendered_width: float = PREVIEW_WIDTH,
    ) -> None:
        self.model = model or DocumentModel()
        self.measurer = measurer or PreviewMeasurer()
        self.rendered_width = float(rendered_width)
        self.select_mode: SelectMode = "field"
        self.selected_field = 0
        self.selected_image = -1
        self.preview_row = 0
        self.last_commands: list[DrawCommand] = []
        self._listeners: list[RedrawListener] = []

    # ── OBSERVERS ─────────────────────────────────────────────────────────────

    def subscribe(self, listener: RedrawListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def redraw(self) -> list[DrawCommand]:
        if self.model.template is None:
            self.last_commands = []
            return self.last_commands
        self.last_commands = self.render_commands()
        logger.debug("Redraw: %d commands at scale %.3f", len(self.last_commands), self.scale)
        for listener in list(self._listeners):
            listener(self.last_commands)
        return self.last_commands

    # ── GEOMETRY ──────────────────────────────────────────────────────────────

    @property
    def scale(self) -> float:
        if self.model.template is None:
            return 1.0
        return self.rendered_width / self.model.template.width

    @property
    def rendered_height(self) -> float:
        if self.model.template is None:
            return 0.0
        return self.model.template.height * self.scale

    def set_viewport(self, rendered_width: float) -> None:
        if rendered_width <= 0:
            raise InputValidationError("Preview width must be positive.")
        self.rendered_width = float(rendered_width)
        self.redraw()

    def to_template_point(
        self,
        client_x: float,
        client_y: float,
        rect_left: float = 0.0,
        rect_top: float = 0.0,
    ) -> tuple[int, int]:
        template = self.model.template
        if template is None:
            raise InputValidationError("Upload a certificate template first.")
        scale_x = template.width / self.rendered_width
        scale_y = template.height / self.rendered_height
        x = (client_x - rect_left) * scale_x
        y_top = (client_y - rect_top) * scale_y
        return round_px(x), round_px(template.height - y_top)

    # ── SELECTION ─────────────────────────────────────────────────────────────

    def select_field(self, index: int) -> None:
        if not 0 <= index < len(self.model.dynamic_fields):
            raise InputValidationError(f"No field at index {index}.")
        self.select_mode = "field"
        self.selected_field = index
        self.redraw()

    def select_description(self) -> None:
        self.select_mode = "description"
        self.redraw()

    def select_image(self, index: int) -> None:
        if not 0 <= index < len(self.model.images):
            raise InputValidationError(f"No image at index {index}.")
        self.select_mode = "image"
        self.selected_image = index
        self.redraw()

    def set_preview_row(self, row: int) -> int:
        last_row = max(0, self.model.row_count - 1)
        self.preview_row = max(0, min(int(row), last_row))
        self.redraw()
        return self.preview_row

    def _selected_target(self) -> tuple[SelectMode, int] | None:
        if self.select_mode == "image":
            if self.selected_image < 0 or self.selected_image >= len(self.model.images):
                return None
            return "image", self.selected_image
        if self.select_mode == "field":
            return "field", self.selected_field
        return "description", 0

    # ── POINTER AND KEYBOARD ──────────────────────────────────────────────────

    def click(
        self,
        client_x: float,
        client_y: float,
        rect_left: float = 0.0,
        rect_top: float = 0.0,
    ) -> bool:
        if self.model.template is None:
            return False
        target = self._selected_target()
        if target is None:
            return False
        x, y = self.to_template_point(client_x, client_y, rect_left, rect_top)
        self.model.update_position(target[0], target[1], x, y)
        self.redraw()
        return True

    def key_down(self, key: str, shift: bool = False, form_focused: bool = False) -> bool:
        """Nudge the selection with the arrow keys; returns True when handled."""
        if form_focused or key not in ARROW_KEYS:
            return False
        target = self._selected_target()
        if target is None:
            return False
        step = NUDGE_STEP_LARGE if shift else NUDGE_STEP
        dx, dy = ARROW_KEYS[key]
        self.model.nudge(target[0], target[1], dx * step, dy * step)
        self.redraw()
        return True

    # ── MODEL EDITS ───────────────────────────────────────────────────────────

    def load_template(self, template: Template) -> None:
        self.model.set_template(template)
        self.redraw()

    def set_custom_font(self, data: bytes | None) -> None:
        self.measurer = PreviewMeasurer(data)
        self.redraw()

    def set_field_count(self, count: int) -> int:
        count = self.model.set_field_count(count)
        if self.selected_field >= count:
            self.selected_field = max(0, count - 1)
        self.redraw()
        return count

    def update_field(self, index: int, patch: dict[str, Any]) -> None:
        self.model.update_field(index, patch)
        self.redraw()

    def update_description(self, patch: dict[str, Any]) -> None:
        self.model.update_description(patch)
        self.redraw()

    def add_image(self, data: bytes, name: str = "") -> int:
        raster, width, height = load_image(data, name)
        index = self.model.add_image(raster, width, height, name=name)
        self.select_mode = "image"
        self.selected_image = index
        self.redraw()
        return index

    def update_image(self, index: int, patch: dict[str, Any]) -> None:
        self.model.update_image(index, patch)
        self.redraw()

    def remove_image(self, index: int) -> None:
        self.model.remove_image(index)
        self.selected_image = -1
        self.redraw()

    # ── RENDERING ─────────────────────────────────────────────────────────────

    def current_record(self) -> dict[str, str]:
        last_row = max(0, self.model.row_count - 1)
        return self.model.build_record(max(0, min(self.preview_row, last_row)))

    def render_commands(self) -> list[DrawCommand]:
        return compose_page(
            self.model,
            self.current_record(),
            self.measurer,
            scale=self.scale,
            y_down=True,
        )

    def render_png(self) -> bytes:
        if self.model.template is None:
            raise InputValidationError("Upload a certificate template first.")
        highlight = None
        if self.select_mode == "image" and 0 <= self.selected_image < len(self.model.images):
            highlight = self.model.images[self.selected_image].id
        return rasterize(
            self.render_commands(),
            self.rendered_width,
            self.rendered_height,
            custom_font=self.measurer.custom_font,
            highlight_key=highlight,
        )
