"""
Turns the document model plus one record into a flat list of draw commands.

The same function feeds the on-screen preview (``y_down=True``, scaled to the
preview width) and the PDF export (``y_down=False``, template pixels), so both
surfaces go through identical tokenizing, wrapping and justification.
"""

from typing import Mapping

from document_model import (
    Description,
    DocumentModel,
    DynamicField,
    ImagePlacement,
    Template,
    placeholder_name,
)
from errors import InputValidationError
from text_layout import (
    DrawCommand,
    DrawImage,
    DrawText,
    FontPair,
    ParagraphOptions,
    TextMeasurer,
    align_start_x,
    layout_paragraph,
)


class PageFrame:
    """Maps template space (bottom-left origin) onto a drawing surface."""

    def __init__(self, template: Template, scale: float = 1.0, y_down: bool = False) -> None:
        self.template = template
        self.scale = scale
        self.y_down = y_down

    @property
    def width(self) -> float:
        return self.template.width * self.scale

    @property
    def height(self) -> float:
        return self.template.height * self.scale

    def x(self, x: float) -> float:
        return x * self.scale

    def y(self, y: float) -> float:
        if self.y_down:
            return (self.template.height - y) * self.scale
        return y * self.scale

    def image_box(self, image: ImagePlacement) -> tuple[float, float, float, float]:
        """Corner and size of *image* on the surface; the anchor is its centre."""
        draw_w, draw_h = image.draw_size()
        draw_w *= self.scale
        draw_h *= self.scale
        return (
            self.x(image.position.x) - draw_w / 2,
            self.y(image.position.y) - draw_h / 2,
            draw_w,
            draw_h,
        )


def _paragraph_options(block, frame: PageFrame) -> ParagraphOptions:
    return ParagraphOptions(
        x=frame.x(block.position.x),
        y=frame.y(block.position.y),
        font_size=block.font_size * frame.scale,
        max_width=block.content_width(frame.template.width) * frame.scale,
        color=block.color,
        justify=block.justify,
        align=block.align,
        y_down=frame.y_down,
    )


def compose_field(
    field: DynamicField,
    value: str,
    measurer: TextMeasurer,
    frame: PageFrame,
) -> list[DrawText]:
    if not field.visible or not value:
        return []
    font = measurer.font_pair(field.font_family).pick(field.bold)
    options = _paragraph_options(field, frame)
    text_width = measurer.width(value, font, options.font_size)
    if text_width <= options.max_width:
        return [
            DrawText(
                x=align_start_x(options.x, text_width, options.align),
                y=options.y,
                text=value,
                font=font,
                size=options.font_size,
                color=options.color,
            )
        ]
    # The value is its own text; it is not scanned for placeholders again.
    return layout_paragraph(value, {}, FontPair(font, font), measurer, options)


def compose_description(
    description: Description,
    record: Mapping[str, str],
    measurer: TextMeasurer,
    frame: PageFrame,
) -> list[DrawText]:
    if not description.visible or not description.text:
        return []
    return layout_paragraph(
        description.text,
        record,
        measurer.font_pair(description.font_family),
        measurer,
        _paragraph_options(description, frame),
        bold_placeholders=description.bold,
    )


def compose_page(
    model: DocumentModel,
    record: Mapping[str, str],
    measurer: TextMeasurer,
    scale: float = 1.0,
    y_down: bool = False,
) -> list[DrawCommand]:
    if model.template is None:
        raise InputValidationError("Upload a certificate template first.")
    frame = PageFrame(model.template, scale=scale, y_down=y_down)

    commands: list[DrawCommand] = [
        DrawImage(0.0, 0.0, frame.width, frame.height, model.template.raster, key="template")
    ]
    for image in model.images:
        if not image.visible or not image.raster:
            continue
        x, y, w, h = frame.image_box(image)
        commands.append(DrawImage(x, y, w, h, image.raster, key=image.id))

    for index, field in enumerate(model.dynamic_fields):
        value = record.get(placeholder_name(index), "")
        commands.extend(compose_field(field, value, measurer, frame))

    commands.extend(compose_description(model.description, record, measurer, frame))
    return commands
