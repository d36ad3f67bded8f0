"""Tests for the command-line entry point."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from stemma.main import build_parser, main
from stemma.models import FamilyData


@pytest.fixture
def family_file(three_married_children: FamilyData, tmp_path: Path) -> Path:
    path = tmp_path / "family.json"
    path.write_text(json.dumps(three_married_children.to_dict()), encoding="utf-8")
    return path


def test_parser_defaults() -> None:
    args = build_parser().parse_args(["tree.json", "--focus", "p1"])
    assert args.ancestors == 2
    assert args.descendants == 2
    assert not args.aunts_uncles
    assert not args.collapsed
    assert args.output == Path("family_tree.png")
    assert args.dot is None


def test_main_writes_plot_and_dot(family_file: Path, tmp_path: Path, capsys) -> None:
    output = tmp_path / "tree.png"
    dot = tmp_path / "tree.dot"
    code = main([str(family_file), "--focus", "p1", "-o", str(output), "--dot", str(dot)])
    assert code == 0
    assert output.exists()
    assert dot.read_text().startswith("digraph")

    out = capsys.readouterr().out
    assert "Found 12 persons and 4 partnerships" in out
    assert "No validation issues found" in out
    assert out.rstrip().endswith("Done!")


def test_main_reports_data_warnings(three_married_children: FamilyData, tmp_path: Path, capsys) -> None:
    three_married_children.persons["a1"].birth_date = "1900-01-01"
    path = tmp_path / "family.json"
    path.write_text(json.dumps(three_married_children.to_dict()), encoding="utf-8")

    code = main([str(path), "--focus", "p1", "-o", str(tmp_path / "tree.png")])
    assert code == 0
    assert "validation warnings" in capsys.readouterr().out


def test_main_unknown_focus(family_file: Path, tmp_path: Path, capsys) -> None:
    code = main([str(family_file), "--focus", "nobody", "-o", str(tmp_path / "tree.png")])
    assert code == 1
    assert "Unknown focus person: nobody" in capsys.readouterr().out


def test_main_bad_file(tmp_path: Path, capsys) -> None:
    path = tmp_path / "broken.json"
    path.write_text("[", encoding="utf-8")
    assert main([str(path), "--focus", "p1"]) == 1
    assert "Could not load data" in capsys.readouterr().out
