from __future__ import annotations

import json
import subprocess
import sys
import zipfile
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent.parent
SCRIPT = REPO_ROOT / "scripts" / "split_svg.py"


def run_cli(*args: str) -> subprocess.CompletedProcess:
    return subprocess.run([sys.executable, str(SCRIPT), *args], capture_output=True, text=True)


def test_split_svg_cli_writes_archive(wide_svg: str, tmp_path: Path):
    svg_path = tmp_path / "wide.svg"
    svg_path.write_text(wide_svg, encoding="utf-8")
    out_dir = tmp_path / "out"

    proc = run_cli(str(svg_path), "--out-dir", str(out_dir), "--overlap", "4")
    assert proc.returncode == 0, proc.stderr

    archive_path = out_dir / "panel-splitter-3x1-300x200.zip"
    assert str(archive_path) in proc.stdout
    with zipfile.ZipFile(archive_path) as zf:
        names = zf.namelist()
        readme = zf.read("panel-splitter/README.txt").decode("utf-8")
    assert "panel-splitter/tile-r1-c3.svg" in names
    assert "panel-splitter/assembly_map.svg" in names
    assert "  Overlap: 4 mm" in readme


def test_split_svg_cli_settings_file_and_resize(wide_svg: str, tmp_path: Path):
    svg_path = tmp_path / "wide.svg"
    svg_path.write_text(wide_svg, encoding="utf-8")
    settings_path = tmp_path / "settings.json"
    settings_path.write_text(json.dumps({"bedWidth": 400, "exportMode": "fast-clip"}), encoding="utf-8")

    proc = run_cli(
        str(svg_path),
        "--settings", str(settings_path),
        "--width-mm", "310",
        "--out-dir", str(tmp_path),
    )
    assert proc.returncode == 0, proc.stderr
    assert (tmp_path / "panel-splitter-1x1-400x200.zip").exists()


def test_split_svg_cli_rejects_invalid_settings(wide_svg: str, tmp_path: Path):
    svg_path = tmp_path / "wide.svg"
    svg_path.write_text(wide_svg, encoding="utf-8")

    proc = run_cli(str(svg_path), "--margin", "150", "--out-dir", str(tmp_path))
    assert proc.returncode == 2
    assert "margin" in proc.stderr
    assert not list(tmp_path.glob("*.zip"))


def test_split_svg_cli_rejects_non_svg(tmp_path: Path):
    path = tmp_path / "design.txt"
    path.write_text("hello", encoding="utf-8")

    proc = run_cli(str(path), "--out-dir", str(tmp_path))
    assert proc.returncode == 1
    assert "Only .svg files are supported" in proc.stderr
