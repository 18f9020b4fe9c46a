import json
import zipfile

import fitz

from certificate_batch import main


def test_export_from_csv(tmp_path, template_png):
    template = tmp_path / "template.png"
    template.write_bytes(template_png)
    csv_path = tmp_path / "people.csv"
    csv_path.write_text("name,team\nAmy,Red\nBob,Blue\n", encoding="utf-8")
    output = tmp_path / "out" / "certs.zip"

    code = main(
        [
            "--template", str(template),
            "--csv", str(csv_path),
            "--columns", "name,team",
            "--output", str(output),
            "--yes",
        ]
    )

    assert code == 0
    with zipfile.ZipFile(output) as zf:
        assert zf.namelist() == ["Amy.pdf", "Bob.pdf"]


def test_preview_with_layout_and_image(tmp_path, template_png, logo_png):
    template = tmp_path / "template.png"
    template.write_bytes(template_png)
    (tmp_path / "logo.png").write_bytes(logo_png)
    layout = {
        "dynamicFields": [{"id": "field1", "label": "Field 1", "valuesText": "Amy\nBob"}],
        "images": [
            {
                "id": "img1",
                "naturalWidth": 100,
                "naturalHeight": 50,
                "position": {"x": 100, "y": 100},
                "source": "logo.png",
            }
        ],
    }
    layout_path = tmp_path / "layout.json"
    layout_path.write_text(json.dumps(layout), encoding="utf-8")
    preview = tmp_path / "preview.png"

    code = main(
        [
            "--template", str(template),
            "--layout", str(layout_path),
            "--preview-row", "1",
            "--preview-out", str(preview),
            "--preview-width", "200",
        ]
    )

    assert code == 0
    pix = fitz.Pixmap(preview.read_bytes())
    assert (pix.width, pix.height) == (200, 150)


def test_missing_template_fails_cleanly(tmp_path, capsys):
    code = main(["--template", str(tmp_path / "missing.png"), "--yes"])

    assert code == 1
    assert "[FAIL]" in capsys.readouterr().err


def test_unconfirmed_mismatch_fails(tmp_path, template_png, monkeypatch, capsys):
    template = tmp_path / "template.png"
    template.write_bytes(template_png)
    csv_path = tmp_path / "people.csv"
    csv_path.write_text("name,team\nAmy,Red\nBob,\n", encoding="utf-8")
    monkeypatch.setattr("builtins.input", lambda prompt="": "n")

    code = main(
        [
            "--template", str(template),
            "--csv", str(csv_path),
            "--columns", "name,team",
            "--output", str(tmp_path / "certs.zip"),
        ]
    )

    assert code == 1
    assert not (tmp_path / "certs.zip").exists()
    assert "[WARN]" in capsys.readouterr().out
