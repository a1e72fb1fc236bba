import json
import sys

import pytest
from cryptography.fernet import Fernet

from fieldmedia.cli import main

DOCUMENT = {
    "version": 1,
    "canvas": {"width": 200, "height": 100},
    "objects": [{"id": "c1", "type": "circle", "x": 50, "y": 50, "radius": 20, "color": "#0000ff"}],
}


@pytest.fixture
def doc_file(tmp_path):
    path = tmp_path / "doc.json"
    path.write_text(json.dumps(DOCUMENT))
    return path


def run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["fieldmedia", *argv])
    main()


def test_validate_valid_document(monkeypatch, capsys, doc_file):
    run(monkeypatch, "validate", str(doc_file))
    assert capsys.readouterr().out.splitlines()[-1] == "valid"


def test_validate_invalid_document_exits(monkeypatch, capsys, tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"version": 1, "canvas": {"width": 10, "height": 10}, "objects": "nope"}))

    with pytest.raises(SystemExit) as exc:
        run(monkeypatch, "validate", str(bad))
    assert exc.value.code == 1
    out = capsys.readouterr().out
    assert "error: Annotation objects must be an array" in out
    assert out.strip().endswith("invalid")


def test_not_json_exits(monkeypatch, tmp_path):
    junk = tmp_path / "junk.json"
    junk.write_text("{not json")
    with pytest.raises(SystemExit):
        run(monkeypatch, "validate", str(junk))


def test_sanitize_to_file(monkeypatch, doc_file, tmp_path):
    out = tmp_path / "clean.json"
    run(monkeypatch, "sanitize", str(doc_file), "-o", str(out))

    cleaned = json.loads(out.read_text())
    assert cleaned["objects"][0]["color"] == "#0000FF"


def test_render_svg_to_file(monkeypatch, doc_file, tmp_path):
    out = tmp_path / "doc.svg"
    run(monkeypatch, "render", str(doc_file), "-o", str(out), "--scale", "2")

    svg = out.read_text()
    assert 'width="400"' in svg
    assert "<circle" in svg


def test_keygen_prints_fernet_key(monkeypatch, capsys):
    run(monkeypatch, "keygen")
    key = capsys.readouterr().out.strip()
    Fernet(key.encode())


def test_no_command_prints_help(monkeypatch):
    with pytest.raises(SystemExit):
        run(monkeypatch)
