from __future__ import annotations

import io
from pathlib import Path
from typing import Any

import pytest
import uvicorn

from novelgraph import cli
from novelgraph.model import VisualNovel
from novelgraph.persistence import save_novel_to_file
from novelgraph.renpy import compile_script


@pytest.fixture()
def rivals_file(tmp_path: Path, cast_novel: VisualNovel) -> Path:
    return save_novel_to_file(cast_novel, tmp_path / "rivals.json")


def _run(argv: list[str], stdin: str = "") -> tuple[int, str]:
    stdout = io.StringIO()
    code = cli.main(argv, stdin=io.StringIO(stdin), stdout=stdout)
    return code, stdout.getvalue()


def test_analyse_prints_all_reports() -> None:
    code, output = _run(["analyse"])

    assert code == 0
    assert "Reachable scenes: 5 / 5" in output
    assert "No integrity issues detected." in output
    assert "Scenes: 5 (3 endings)" in output


def test_tree_prints_outline(rivals_file: Path) -> None:
    code, output = _run(["tree", str(rivals_file)])

    assert code == 0
    assert "Meeting" in output
    assert "Fight" in output


def test_compile_to_stdout(rivals_file: Path, cast_novel: VisualNovel) -> None:
    code, output = _run(["compile", str(rivals_file)])

    assert code == 0
    assert output == compile_script(cast_novel)


def test_compile_to_file(tmp_path: Path, rivals_file: Path) -> None:
    target = tmp_path / "game" / "script.rpy"

    code, output = _run(["compile", str(rivals_file), "--output", str(target)])

    assert code == 0
    assert output.strip() == f"Wrote {target}"
    assert target.read_text(encoding="utf-8").startswith("# Ren'Py Script - Rivals")


def test_load_failure_exits_with_two(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")

    assert _run(["analyse", str(tmp_path / "missing.json")])[0] == 2
    assert _run(["tree", str(broken)])[0] == 2
    assert "Failed to load novel" in capsys.readouterr().err


def test_play_through_to_ending(rivals_file: Path) -> None:
    code, output = _run(["play", str(rivals_file)], stdin="\n\nx\n1\n")

    assert code == 0
    assert output.startswith("== Rivals ==\nTwo figures meet.\n> ")
    assert "Hero: You again." in output
    assert "Rival: Me again.\n  1. Fight\nchoose> " in output
    assert "Pick a number between 1 and 1." in output
    assert output.endswith("Hero: Have at you!\n\nThe End\n")


def test_play_restart_and_quit(rivals_file: Path) -> None:
    code, output = _run(["play", str(rivals_file)], stdin="\nr\nq\n")

    assert code == 0
    assert output.count("Two figures meet.") == 2


def test_play_stops_at_end_of_input(rivals_file: Path) -> None:
    code, output = _run(["play", str(rivals_file)])

    assert code == 0
    assert "Hero: You again." not in output


def test_play_missing_scene_is_an_error(rivals_file: Path) -> None:
    code, output = _run(["play", str(rivals_file), "--scene", "nowhere"])

    assert code == 1
    assert "[error] Scene 'nowhere' could not be found." in output


def test_serve_runs_uvicorn(
    monkeypatch: pytest.MonkeyPatch, rivals_file: Path
) -> None:
    calls: list[dict[str, Any]] = []

    def _fake_run(app: Any, **kwargs: Any) -> None:
        calls.append({"app": app, **kwargs})

    monkeypatch.setattr(uvicorn, "run", _fake_run)
    monkeypatch.delenv("NOVELGRAPH_NOVEL_PATH", raising=False)
    monkeypatch.setenv("NOVELGRAPH_LOG_LEVEL", "info")

    code = cli.main(["serve", "--port", "9001", "--novel", str(rivals_file)])

    assert code == 0
    assert len(calls) == 1
    assert calls[0]["host"] == "127.0.0.1"
    assert calls[0]["port"] == 9001
    assert calls[0]["log_level"] == "info"
    assert calls[0]["app"].title == "Visual Novel Graph API"


def test_subcommand_is_required() -> None:
    with pytest.raises(SystemExit):
        cli.main([])
