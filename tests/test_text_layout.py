import pytest

from text_layout import (
    FontPair,
    Line,
    ParagraphOptions,
    Token,
    break_lines,
    layout_paragraph,
    line_height_for,
    render_paragraph,
    tokenize,
)

FONTS = FontPair("R", "B")


def texts(tokens):
    return [t.text for t in tokens]


def line_texts(lines):
    return ["".join(t.text for t in line.items) for line in lines]


def test_placeholder_becomes_one_token(measurer):
    tokens = tokenize("Hi {field1}!", {"field1": "Ada Lovelace"}, FONTS, 2, measurer)

    assert texts(tokens) == ["Hi", " ", "Ada Lovelace", "!"]
    assert tokens[2].width == 12
    assert not tokens[2].is_space


@pytest.mark.parametrize("bold, expected", [(True, "B"), (False, "R")])
def test_placeholder_weight_follows_bold_flag(measurer, bold, expected):
    tokens = tokenize("Hi {field1}!", {"field1": "Ada"}, FONTS, 2, measurer, bold_placeholders=bold)

    assert tokens[2].font == expected
    assert tokens[0].font == "R"
    assert tokens[3].font == "R"


def test_unknown_placeholder_stays_literal(measurer):
    tokens = tokenize("Team {team} wins", {"field1": "Ada"}, FONTS, 2, measurer)

    assert texts(tokens) == ["Team", " ", "{team}", " ", "wins"]


def test_substituted_value_is_not_expanded_again(measurer):
    record = {"field1": "{field2}", "field2": "nested"}
    tokens = tokenize("{field1}", record, FONTS, 2, measurer)

    assert texts(tokens) == ["{field2}"]


def test_adjacent_placeholders_and_empty_values(measurer):
    record = {"field1": "A", "field2": "", "field3": "C"}
    tokens = tokenize("{field1}{field2}{field3}", record, FONTS, 2, measurer)

    assert texts(tokens) == ["A", "C"]


def test_whitespace_runs_are_single_space_tokens(measurer):
    tokens = tokenize("a \t b", {}, FONTS, 2, measurer)

    assert texts(tokens) == ["a", " \t ", "b"]
    assert [t.is_space for t in tokens] == [False, True, False]


def test_break_lines_greedy(measurer):
    tokens = tokenize("aaa bbb ccc ddd", {}, FONTS, 2, measurer)
    lines = break_lines(tokens, 7)

    assert line_texts(lines) == ["aaa bbb", "ccc ddd"]
    assert [line.width for line in lines] == [7, 7]


def test_oversized_token_gets_its_own_line(measurer):
    tokens = tokenize("a verylongwordhere b", {}, FONTS, 2, measurer)
    lines = break_lines(tokens, 5)

    assert line_texts(lines) == ["a", "verylongwordhere", "b"]
    for line in lines:
        assert line.width <= 5 or len(line.items) == 1


def test_placeholder_value_is_never_split(measurer):
    tokens = tokenize("x {field1} y", {"field1": "Ada Lovelace"}, FONTS, 2, measurer)
    lines = break_lines(tokens, 5)

    assert line_texts(lines) == ["x", "Ada Lovelace", "y"]


def test_trailing_space_is_trimmed(measurer):
    lines = break_lines(tokenize("ab   ", {}, FONTS, 2, measurer), 50)

    assert len(lines) == 1
    assert line_texts(lines) == ["ab"]
    assert lines[0].width == 2


def test_empty_text_has_no_lines(measurer):
    assert break_lines(tokenize("", {}, FONTS, 2, measurer), 10) == []


@pytest.mark.parametrize("align, expected_x", [("left", 400), ("center", 340), ("right", 280)])
def test_alignment_start_x(align, expected_x):
    line = Line(items=[Token("word", "R", False, 120)], width=120)
    options = ParagraphOptions(x=400, y=100, font_size=10, max_width=500, align=align)

    (cmd,) = render_paragraph([line], options)

    assert cmd.x == pytest.approx(expected_x)


def test_justify_spreads_spaces_except_last_line(measurer):
    options = ParagraphOptions(x=0, y=0, font_size=2, max_width=6, justify=True)
    commands = layout_paragraph("aa bb cc dd", {}, FONTS, measurer, options)

    assert [(c.text, c.x) for c in commands] == [
        ("aa", 0),
        ("bb", 4),
        ("cc", 0),
        ("dd", 3),
    ]


def test_justify_without_spaces_leaves_line_alone():
    lines = [
        Line(items=[Token("abc", "R", False, 3)], width=3),
        Line(items=[Token("d", "R", False, 1)], width=1),
    ]
    options = ParagraphOptions(x=10, y=0, font_size=2, max_width=20, justify=True)

    commands = render_paragraph(lines, options)

    assert commands[0].x == 10


def test_line_height_and_direction(measurer):
    up = ParagraphOptions(x=0, y=100, font_size=20, max_width=6)
    down = ParagraphOptions(x=0, y=100, font_size=20, max_width=6, y_down=True)

    assert line_height_for(20) == pytest.approx(27)
    up_cmds = layout_paragraph("aa bb", {}, FONTS, measurer, up)
    down_cmds = layout_paragraph("aa bb", {}, FONTS, measurer, down)

    assert [c.y for c in up_cmds] == pytest.approx([100, 73])
    assert [c.y for c in down_cmds] == pytest.approx([100, 127])


def test_whitespace_only_advances_the_cursor(measurer):
    options = ParagraphOptions(x=0, y=0, font_size=2, max_width=100)

    commands = layout_paragraph("a  b\tc", {}, FONTS, measurer, options)

    assert [(c.text, c.x) for c in commands] == [("a", 0), ("b", 3), ("c", 5)]
