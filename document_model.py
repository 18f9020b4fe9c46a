import math
import re
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator
from pydantic.alias_generators import to_camel, to_snake

from config import MAX_FIELD_COUNT, MIN_CONTENT_WIDTH, MIN_FIELD_COUNT
from errors import InputValidationError

Align = Literal["left", "center", "right"]
FontFamily = Literal["Helvetica", "Times", "Courier", "Custom"]
TargetKind = Literal["field", "description", "image"]

DEFAULT_DESCRIPTION = (
    "This certificate is proudly awarded to {field1} of Team {field2} "
    "in recognition of outstanding collaboration and creativity."
)

_NAMED_COLORS = {
    "black": (0.0, 0.0, 0.0),
    "white": (1.0, 1.0, 1.0),
    "red": (1.0, 0.0, 0.0),
    "green": (0.0, 0.5, 0.0),
    "blue": (0.0, 0.0, 1.0),
    "gray": (0.5, 0.5, 0.5),
    "grey": (0.5, 0.5, 0.5),
}
_RGB_FUNC = re.compile(r"rgb\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*\)")
_LINE_SPLIT = re.compile(r"\r?\n")


def parse_color(value: Any) -> tuple[float, float, float]:
    """Accept an RGB triple in [0, 1], a ``#rgb``/``#rrggbb`` string, ``rgb(r,g,b)`` or a basic name."""
    if isinstance(value, (list, tuple)):
        if len(value) != 3:
            raise ValueError(f"Color needs three components, got {len(value)}.")
        r, g, b = (max(0.0, min(1.0, float(c))) for c in value)
        return (r, g, b)
    if not isinstance(value, str):
        raise ValueError(f"Unsupported color value: {value!r}")
    s = value.strip().lower()
    if s in _NAMED_COLORS:
        return _NAMED_COLORS[s]
    if s.startswith("#"):
        hexv = s[1:]
        if len(hexv) == 3:
            hexv = "".join(ch * 2 for ch in hexv)
        if len(hexv) == 6 and all(ch in "0123456789abcdef" for ch in hexv):
            return (
                int(hexv[0:2], 16) / 255.0,
                int(hexv[2:4], 16) / 255.0,
                int(hexv[4:6], 16) / 255.0,
            )
    m = _RGB_FUNC.fullmatch(s)
    if m:
        r, g, b = (max(0, min(255, int(m.group(i)))) / 255.0 for i in (1, 2, 3))
        return (r, g, b)
    raise ValueError(f"Unsupported color value: {value!r}")


def split_values(values_text: str) -> list[str]:
    return [line.strip() for line in _LINE_SPLIT.split(values_text or "") if line.strip()]


def placeholder_name(index: int) -> str:
    return f"field{index + 1}"


def round_px(value: float) -> int:
    return int(math.floor(value + 0.5))


class LayoutModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Position(LayoutModel):
    x: float = 0.0
    y: float = 0.0


class TextBlockStyle(LayoutModel):
    font_size: float = Field(default=28.0, gt=0)
    color: tuple[float, float, float] = (0.0, 0.0, 0.0)
    font_family: FontFamily = "Helvetica"
    bold: bool = False
    justify: bool = False
    align: Align = "left"
    position: Position = Field(default_factory=Position)
    padding_x: float = Field(default=0.0, ge=0)
    visible: bool = True

    @field_validator("color", mode="before")
    @classmethod
    def _coerce_color(cls, value: Any) -> tuple[float, float, float]:
        return parse_color(value)

    def content_width(self, template_width: float) -> float:
        return max(MIN_CONTENT_WIDTH, template_width - 2 * self.padding_x)


class DynamicField(TextBlockStyle):
    id: str
    label: str
    values_text: str = ""

    def values(self) -> list[str]:
        return split_values(self.values_text)


class Description(TextBlockStyle):
    text: str = DEFAULT_DESCRIPTION


class ImagePlacement(LayoutModel):
    id: str
    name: str = ""
    raster: bytes = Field(default=b"", repr=False)
    natural_width: int = Field(gt=0)
    natural_height: int = Field(gt=0)
    # Anchor is the centre of the image.
    position: Position = Field(default_factory=Position)
    scale: float = Field(default=1.0, gt=0)
    visible: bool = True
    source: str | None = None

    def draw_size(self) -> tuple[float, float]:
        return self.natural_width * self.scale, self.natural_height * self.scale


class Template(LayoutModel):
    raster: bytes = Field(repr=False)
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    media_type: str = "image/png"


@dataclass(frozen=True)
class CountMismatch:
    field_id: str
    label: str
    count: int
    expected: int

    def __str__(self) -> str:
        return f"{self.label} has {self.count} value(s) but Field 1 has {self.expected}"


def new_field(index: int, position: Position | None = None) -> DynamicField:
    return DynamicField(
        id=placeholder_name(index),
        label=f"Field {index + 1}",
        font_size=28,
        align="left",
        position=position or Position(),
    )


def default_fields() -> list[DynamicField]:
    return [
        DynamicField(id="field1", label="Field 1", font_size=48, bold=True, align="center"),
        DynamicField(id="field2", label="Field 2", font_size=20, bold=True, align="center"),
    ]


def default_description() -> Description:
    return Description(font_size=18, padding_x=80, justify=True, align="center")


def _merge(model: BaseModel, patch: dict[str, Any]) -> Any:
    data = model.model_dump()
    data.update({to_snake(key): value for key, value in patch.items()})
    return type(model).model_validate(data)


class DocumentModel(LayoutModel):
    """Recipient-independent layout of one certificate batch."""

    dynamic_fields: list[DynamicField] = Field(default_factory=default_fields)
    description: Description = Field(default_factory=default_description)
    images: list[ImagePlacement] = Field(default_factory=list)
    template: Template | None = None

    _positions_template: Template | None = PrivateAttr(default=None)

    # ── TEMPLATE ──────────────────────────────────────────────────────────────

    def set_template(self, template: Template) -> None:
        self.template = template
        self.initialize_default_positions(template)

    def initialize_default_positions(self, template: Template) -> bool:
        """Fill zero coordinates from the template size, once per loaded template.

        Returns False when the positions were already initialized for this
        template instance.
        """
        if self._positions_template is template:
            return False
        center_x = round_px(template.width / 2)
        for index, fld in enumerate(self.dynamic_fields):
            default = self._stagger_position(index, template)
            fld.position = Position(
                x=fld.position.x or center_x,
                y=fld.position.y or default.y,
            )
        self.description.position = Position(
            x=self.description.position.x or center_x,
            y=self.description.position.y or round_px(template.height * 0.6),
        )
        self._positions_template = template
        return True

    @staticmethod
    def _stagger_position(index: int, template: Template) -> Position:
        start_y = round_px(template.height * 0.45)
        return Position(x=round_px(template.width / 2), y=max(40, start_y - index * 48))

    # ── FIELDS ────────────────────────────────────────────────────────────────

    def set_field_count(self, count: int) -> int:
        count = max(MIN_FIELD_COUNT, min(MAX_FIELD_COUNT, int(count)))
        if count < len(self.dynamic_fields):
            del self.dynamic_fields[count:]
        for index in range(len(self.dynamic_fields), count):
            position = self._stagger_position(index, self.template) if self.template else None
            self.dynamic_fields.append(new_field(index, position))
        return count

    def _check_index(self, kind: str, index: int, size: int) -> None:
        if index < 0 or index >= size:
            raise InputValidationError(f"No {kind} at index {index} (have {size}).")

    def update_field(self, index: int, patch: dict[str, Any]) -> DynamicField:
        self._check_index("field", index, len(self.dynamic_fields))
        self.dynamic_fields[index] = _merge(self.dynamic_fields[index], patch)
        return self.dynamic_fields[index]

    def update_description(self, patch: dict[str, Any]) -> Description:
        self.description = _merge(self.description, patch)
        return self.description

    # ── IMAGES ────────────────────────────────────────────────────────────────

    def add_image(self, raster: bytes, width: int, height: int, name: str = "") -> int:
        if self.template is not None:
            position = Position(x=round_px(self.template.width / 2), y=round_px(self.template.height / 2))
        else:
            position = Position(x=400, y=200)
        self.images.append(
            ImagePlacement(
                id=self._next_image_id(),
                name=name,
                raster=raster,
                natural_width=width,
                natural_height=height,
                position=position,
            )
        )
        return len(self.images) - 1

    def _next_image_id(self) -> str:
        """First ``imgN`` id not taken by a current image."""
        taken = {image.id for image in self.images}
        serial = len(self.images) + 1
        while f"img{serial}" in taken:
            serial += 1
        return f"img{serial}"

    def remove_image(self, index: int) -> None:
        self._check_index("image", index, len(self.images))
        del self.images[index]

    def update_image(self, index: int, patch: dict[str, Any]) -> ImagePlacement:
        self._check_index("image", index, len(self.images))
        self.images[index] = _merge(self.images[index], patch)
        return self.images[index]

    # ── POSITIONS ─────────────────────────────────────────────────────────────

    def _target(self, kind: TargetKind, index: int) -> TextBlockStyle | ImagePlacement:
        if kind == "field":
            self._check_index("field", index, len(self.dynamic_fields))
            return self.dynamic_fields[index]
        if kind == "image":
            self._check_index("image", index, len(self.images))
            return self.images[index]
        if kind == "description":
            return self.description
        raise InputValidationError(f"Unknown target kind: {kind}")

    def position_of(self, kind: TargetKind, index: int = 0) -> Position:
        return self._target(kind, index).position

    def update_position(self, kind: TargetKind, index: int, x: float, y: float) -> Position:
        target = self._target(kind, index)
        target.position = Position(x=x, y=y)
        return target.position

    def nudge(self, kind: TargetKind, index: int, dx: float, dy: float) -> Position:
        current = self._target(kind, index).position
        return self.update_position(
            kind,
            index,
            round_px(current.x + dx),
            round_px(current.y + dy),
        )

    # ── RECORDS ───────────────────────────────────────────────────────────────

    @property
    def row_count(self) -> int:
        return len(self.dynamic_fields[0].values()) if self.dynamic_fields else 0

    def field_value(self, index: int, row: int) -> str:
        values = self.dynamic_fields[index].values()
        if row < len(values):
            return values[row]
        if values:
            return values[0]
        return "{" + placeholder_name(index) + "}"

    def build_record(self, row: int) -> dict[str, str]:
        return {placeholder_name(i): self.field_value(i, row) for i in range(len(self.dynamic_fields))}

    def count_mismatches(self) -> list[CountMismatch]:
        expected = self.row_count
        mismatches = []
        for fld in self.dynamic_fields[1:]:
            count = len(fld.values())
            if count and count != expected:
                mismatches.append(CountMismatch(fld.id, fld.label, count, expected))
        return mismatches

    # ── LAYOUT FILES ──────────────────────────────────────────────────────────

    def to_layout(self) -> dict[str, Any]:
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"template": True, "images": {"__all__": {"raster"}}},
        )

    @classmethod
    def from_layout(cls, data: dict[str, Any]) -> "DocumentModel":
        data = {k: v for k, v in data.items() if k != "template"}
        return cls.model_validate(data)
