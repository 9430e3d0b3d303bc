"""
Tests for the CLI — budget, compress, submit, metrics.

Uses Click's CliRunner to test commands without spawning subprocesses.
"""

from __future__ import annotations

import io
import json
import logging
from pathlib import Path

import pytest
from click.testing import CliRunner
from PIL import Image

from kiln.main import cli


def _make_image(width: int, height: int) -> bytes:
    img = Image.new("RGB", (width, height), (180, 90, 40))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture(autouse=True)
def _isolate(monkeypatch):
    """Keep env and root logging handlers from leaking between tests."""
    for var in ("KILN_CONFIG", "KILN_MAX_LIBRARY_BYTES", "KILN_EXPECTED_MAX_SUBMISSIONS"):
        monkeypatch.delenv(var, raising=False)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _run(args: list) -> object:
    runner = CliRunner()
    return runner.invoke(cli, ["--log-level", "ERROR", *args], catch_exceptions=False)


def _write_image(tmp_path: Path, name: str = "bowl.png", size=(2400, 1800)) -> Path:
    path = tmp_path / name
    path.write_bytes(_make_image(*size))
    return path


class TestBudget:

    def test_defaults(self):
        result = _run(["budget"])
        assert result.exit_code == 0
        assert "1,416,666" in result.output
        assert "1,274,999" in result.output
        assert "141,667" in result.output

    def test_json(self):
        result = _run(["budget", "--json"])
        data = json.loads(result.output)
        assert data["main_budget_bytes"] == 1_274_999
        assert data["thumb_budget_bytes"] == 141_667

    def test_non_finite_env_does_not_crash(self, monkeypatch):
        monkeypatch.setenv("KILN_THUMB_MAX_EDGE", "inf")
        result = _run(["budget", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["thumb_max_long_edge"] == 480

    def test_config_file(self, tmp_path):
        cfg = tmp_path / "capacity.yaml"
        cfg.write_text("max_library_bytes: 1000000000\nexpected_max_submissions: 1000\nsafety: 1\n")
        result = _run(["--config", str(cfg), "budget"])
        assert result.exit_code == 0
        assert "1,000,000" in result.output


class TestCompress:

    def test_writes_main_derivative(self, tmp_path):
        image = _write_image(tmp_path)
        out_dir = tmp_path / "out"
        result = _run(["compress", str(image), "--out-dir", str(out_dir)])

        assert result.exit_code == 0
        written = out_dir / "bowl.webp"
        assert written.exists()
        assert Image.open(io.BytesIO(written.read_bytes())).size == (1600, 1200)
        assert "1600x1200" in result.output

    def test_thumb_flag(self, tmp_path):
        image = _write_image(tmp_path)
        out_dir = tmp_path / "out"
        result = _run(["compress", str(image), "--thumb", "-o", str(out_dir)])

        assert result.exit_code == 0
        assert Image.open(out_dir / "bowl.webp").size == (480, 360)

    def test_overrides_and_jpeg(self, tmp_path):
        image = _write_image(tmp_path)
        out_dir = tmp_path / "out"
        result = _run([
            "compress", str(image), "-o", str(out_dir),
            "--max-edge", "200", "--target-bytes", "20000", "--codec", "image/jpeg",
        ])

        assert result.exit_code == 0
        written = out_dir / "bowl.jpg"
        assert Image.open(written).size == (200, 150)
        assert written.stat().st_size <= 20000

    def test_not_an_image(self, tmp_path):
        bogus = tmp_path / "notes.png"
        bogus.write_text("hello")
        result = _run(["compress", str(bogus), "-o", str(tmp_path)])

        assert result.exit_code == 1
        assert "Cannot decode image" in result.output


class TestSubmit:

    def test_record_and_files(self, tmp_path):
        image = _write_image(tmp_path, "IMG_0042.png")
        out_dir = tmp_path / "uploads"
        result = _run([
            "submit", str(image), "--identifier", "Shino Jar 2",
            "--tags", "shino, jar", "--uid", "u9", "-o", str(out_dir),
            "--base-url", "https://img.example",
        ])

        assert result.exit_code == 0
        record = json.loads(result.output)
        assert record["identifier"] == "Shino Jar 2"
        assert record["tags"] == ["shino", "jar"]
        assert (record["width"], record["height"]) == (1600, 1200)
        assert record["image_url"].startswith("https://img.example/images/u9/shino-jar-2-")
        assert "/thumbs/" in record["thumb_url"]

        stored = sorted(p.name for p in (out_dir / "images" / "u9").rglob("*.webp"))
        assert len(stored) == 2

    def test_missing_identifier(self, tmp_path):
        image = _write_image(tmp_path, size=(50, 50))
        result = _run(["submit", str(image), "--identifier", "  ", "-o", str(tmp_path)])
        assert result.exit_code == 1
        assert "identifier" in result.output


class TestMetrics:

    def test_prometheus(self, tmp_path):
        image = _write_image(tmp_path, size=(100, 100))
        _run(["compress", str(image), "-o", str(tmp_path / "out")])

        result = _run(["metrics"])
        assert result.exit_code == 0
        assert "# TYPE kiln_compressions_total counter" in result.output
        assert 'kiln_compressions_total{codec="image/webp"} 1.0' in result.output

    def test_json(self):
        result = _run(["metrics", "--format", "json"])
        data = json.loads(result.output)
        assert "kiln_budget_unmet_total" in data["counters"]

    def test_help_mentions_process_scope(self):
        result = _run(["metrics", "--help"])
        assert result.exit_code == 0
        assert "in memory" in result.output

    def test_fresh_process_reports_zero(self):
        data = json.loads(_run(["metrics", "--format", "json"]).output)
        assert data["counters"]["kiln_compressions_total"] == 0
