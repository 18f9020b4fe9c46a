import re
from dataclasses import dataclass, field
from typing import Mapping, Protocol

from config import LINE_HEIGHT_FACTOR

PLACEHOLDER_PATTERN = re.compile(r"\{([^{}]+)\}")
_WHITESPACE_SPLIT = re.compile(r"(\s+)")

RGB = tuple[float, float, float]


@dataclass(frozen=True)
class FontPair:
    regular: str
    bold: str

    def pick(self, bold: bool) -> str:
        return self.bold if bold else self.regular


class TextMeasurer(Protocol):
    """Width of a run of text, in the units of whatever surface draws it."""

    def font_pair(self, family: str) -> FontPair: ...

    def width(self, text: str, font: str, size: float) -> float: ...


@dataclass
class Token:
    text: str
    font: str
    is_space: bool
    width: float = 0.0


@dataclass
class Line:
    items: list[Token] = field(default_factory=list)
    width: float = 0.0


@dataclass(frozen=True)
class DrawText:
    x: float
    y: float
    text: str
    font: str
    size: float
    color: RGB


@dataclass(frozen=True)
class DrawImage:
    x: float
    y: float
    width: float
    height: float
    raster: bytes = field(repr=False)
    key: str = ""


DrawCommand = DrawText | DrawImage


def line_height_for(font_size: float) -> float:
    return font_size * LINE_HEIGHT_FACTOR


def _split_literal(text: str) -> list[str]:
    return [part for part in _WHITESPACE_SPLIT.split(text) if part]


def tokenize(
    text: str,
    record: Mapping[str, str],
    fonts: FontPair,
    size: float,
    measurer: TextMeasurer,
    bold_placeholders: bool = False,
) -> list[Token]:
    """Split *text* into word, space and placeholder tokens, measured at *size*.

    A placeholder becomes exactly one token holding its resolved value, even
    when the value contains spaces; the value is inserted verbatim and never
    scanned again. Unknown placeholders keep their literal ``{name}`` text.
    """
    tokens: list[Token] = []
    placeholder_font = fonts.pick(bold_placeholders)

    def add_literal(segment: str) -> None:
        for part in _split_literal(segment):
            tokens.append(Token(text=part, font=fonts.regular, is_space=part.isspace()))

    last_index = 0
    for match in PLACEHOLDER_PATTERN.finditer(text):
        if match.start() > last_index:
            add_literal(text[last_index:match.start()])
        value = record.get(match.group(1))
        if value is None:
            value = match.group(0)
        if value:
            tokens.append(Token(text=value, font=placeholder_font, is_space=False))
        last_index = match.end()
    if last_index < len(text):
        add_literal(text[last_index:])

    for token in tokens:
        token.width = measurer.width(token.text, token.font, size)
    return tokens


def _close_line(items: list[Token], width: float) -> Line:
    if items and items[-1].is_space:
        width -= items[-1].width
        items = items[:-1]
    return Line(items=items, width=width)


def break_lines(tokens: list[Token], max_width: float) -> list[Line]:
    """Greedy word wrap.

    A non-space token that would push the running width past *max_width*
    starts a new line; space tokens never trigger a break. A trailing space
    is dropped from each finished line together with its width. A single
    token wider than *max_width* stays whole on its own line.
    """
    lines: list[Line] = []
    current: list[Token] = []
    width = 0.0
    for token in tokens:
        if current and not token.is_space and width + token.width > max_width:
            lines.append(_close_line(current, width))
            current = []
            width = 0.0
        current.append(token)
        width += token.width
    if current:
        lines.append(_close_line(current, width))
    return lines


def align_start_x(x: float, width: float, align: str) -> float:
    if align == "center":
        return x - width / 2.0
    if align == "right":
        return x - width
    return x


@dataclass(frozen=True)
class ParagraphOptions:
    x: float
    y: float
    font_size: float
    max_width: float
    color: RGB = (0.0, 0.0, 0.0)
    justify: bool = False
    align: str = "left"
    # Preview surfaces grow y downward; PDF pages grow it upward.
    y_down: bool = False

    @property
    def line_height(self) -> float:
        return line_height_for(self.font_size)


def justify_extra(line: Line, max_width: float) -> float:
    """Extra advance added to each space token so *line* reaches *max_width*."""
    if line.width >= max_width:
        return 0.0
    spaces = sum(1 for token in line.items if token.is_space)
    if spaces == 0:
        return 0.0
    return (max_width - line.width) / spaces


def render_paragraph(lines: list[Line], options: ParagraphOptions) -> list[DrawText]:
    """One DrawText per word or placeholder token, in reading order.

    Space tokens draw nothing; they only advance the cursor by their width
    plus the per-space justification extra.
    """
    commands: list[DrawText] = []
    step = options.line_height if options.y_down else -options.line_height
    cursor_y = options.y
    last = len(lines) - 1

    for index, line in enumerate(lines):
        cursor_x = align_start_x(options.x, line.width, options.align)
        extra = 0.0
        # The last line is never justified.
        if options.justify and index != last:
            extra = justify_extra(line, options.max_width)

        for token in line.items:
            if not token.is_space:
                commands.append(
                    DrawText(
                        x=cursor_x,
                        y=cursor_y,
                        text=token.text,
                        font=token.font,
                        size=options.font_size,
                        color=options.color,
                    )
                )
                cursor_x += token.width
            else:
                cursor_x += token.width + extra
        cursor_y += step
    return commands


def layout_paragraph(
    text: str,
    record: Mapping[str, str],
    fonts: FontPair,
    measurer: TextMeasurer,
    options: ParagraphOptions,
    bold_placeholders: bool = False,
) -> list[DrawText]:
    tokens = tokenize(text, record, fonts, options.font_size, measurer, bold_placeholders)
    return render_paragraph(break_lines(tokens, options.max_width), options)
