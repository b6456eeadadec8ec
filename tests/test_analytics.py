"""Tests for reachability, integrity and metric reports."""

from __future__ import annotations

import logging
from typing import Any

import pytest

from novelgraph.analytics import (
    DANGLING_CHOICE,
    MISSING_START_SCENE,
    StructuralWarning,
    analyze_reachability,
    assess_integrity,
    compute_story_metrics,
    format_integrity_report,
    format_reachability_report,
    format_story_metrics,
    main,
)
from novelgraph.model import Character, DialogueLine, Scene, VisualNovel


def test_demo_is_fully_reachable_in_breadth_first_order(demo_novel: VisualNovel) -> None:
    report = analyze_reachability(demo_novel)

    assert report.reachable == ("scene_1", "scene_2", "scene_4", "scene_3a", "scene_3b")
    assert report.orphans == ()
    assert report.warnings == ()
    assert report.fully_reachable


def test_reachable_contains_start_and_is_closed(build_scene: Any) -> None:
    novel = VisualNovel(
        title="Closure",
        start_scene_id="a",
        scenes=(
            build_scene("a", "b", "gone"),
            build_scene("b", "c", "a"),
            build_scene("c", "c"),
            build_scene("island", "a"),
        ),
    )

    report = analyze_reachability(novel)

    assert novel.start_scene_id in report.reachable
    reachable = set(report.reachable)
    for scene_id in reachable:
        scene = novel.scene(scene_id)
        assert scene is not None
        for choice in scene.choices:
            if novel.scene_exists(choice.next_scene_id):
                assert choice.next_scene_id in reachable


def test_orphans_and_reachable_partition_scenes(build_scene: Any) -> None:
    novel = VisualNovel(
        title="Partition",
        start_scene_id="a",
        scenes=(
            build_scene("z", "a"),
            build_scene("a", "b"),
            build_scene("b"),
            build_scene("y"),
        ),
    )

    report = analyze_reachability(novel)

    assert set(report.reachable) | set(report.orphans) == set(novel.scene_ids)
    assert not set(report.reachable) & set(report.orphans)
    assert report.orphans == ("z", "y")
    assert not report.fully_reachable
    assert report.total_scene_count == 4


def test_dangling_choices_are_warned_not_followed(
    build_scene: Any, caplog: pytest.LogCaptureFixture
) -> None:
    novel = VisualNovel(
        title="Dangling",
        start_scene_id="a",
        scenes=(build_scene("a", "missing", "b"), build_scene("b")),
    )

    with caplog.at_level(logging.WARNING, logger="novelgraph.analytics"):
        report = analyze_reachability(novel)

    assert report.reachable == ("a", "b")
    assert report.warnings == (
        StructuralWarning(kind=DANGLING_CHOICE, scene_id="a", choice_index=0),
    )
    assert "missing targets" in caplog.text


def test_missing_start_scene_is_a_warning(build_scene: Any) -> None:
    novel = VisualNovel(
        title="Lost",
        start_scene_id="nowhere",
        scenes=(build_scene("a"), build_scene("b")),
    )

    report = analyze_reachability(novel)

    assert report.reachable == ()
    assert report.orphans == ("a", "b")
    assert report.start_scene_missing
    assert report.warnings[0].kind == MISSING_START_SCENE
    assert not report.fully_reachable


def test_format_reachability_report_lists_problems(build_scene: Any) -> None:
    novel = VisualNovel(
        title="Report",
        start_scene_id="a",
        scenes=(build_scene("a", "gone"), build_scene("b", name="Backstage")),
    )

    text = format_reachability_report(novel, analyze_reachability(novel))

    assert text.splitlines()[0] == "Scene Reachability"
    assert "Reachable scenes: 1 / 2" in text
    assert "Unconnected scenes:" in text
    assert "- Backstage (b)" in text
    assert "- a :: choice #1" in text


def test_format_reachability_report_all_reachable(demo_novel: VisualNovel) -> None:
    text = format_reachability_report(demo_novel, analyze_reachability(demo_novel))

    assert "All scenes are reachable from the start scene." in text


def test_integrity_reports_dangling_references() -> None:
    novel = VisualNovel(
        title="Broken",
        start_scene_id="s",
        characters=(Character(id="mute", name="Mute", default_expression_id="gone"),),
        scenes=(
            Scene(
                id="s",
                name="S",
                present_character_ids=("ghost",),
                dialogue=(
                    DialogueLine(character_id="stranger", text="Who?"),
                    DialogueLine(character_id="mute", expression_id="nope", text="..."),
                ),
            ),
            Scene(id="empty", name="Empty"),
        ),
    )

    report = assess_integrity(novel)
    kinds = [issue.kind for issue in report.issues]

    assert kinds == [
        "character_without_expressions",
        "unknown_default_expression",
        "unknown_present_character",
        "unknown_speaker",
        "speaker_not_present",
        "unknown_line_expression",
        "scene_without_dialogue",
    ]
    assert report.issues_of_kind("unknown_speaker")[0].reference == "stranger"
    assert report.has_issues


def test_integrity_is_clean_for_demo(demo_novel: VisualNovel) -> None:
    report = assess_integrity(demo_novel)

    assert not report.has_issues
    assert "No integrity issues detected." in format_integrity_report(report)


def test_story_metrics_for_demo(demo_novel: VisualNovel) -> None:
    metrics = compute_story_metrics(demo_novel)

    assert metrics.scene_count == 5
    assert metrics.ending_count == 3
    assert metrics.choice_count == 4
    assert metrics.dialogue_line_count == 10
    assert metrics.narration_line_count == 4
    assert metrics.character_count == 2
    assert metrics.expression_count == 6
    assert metrics.max_choices_in_scene == 2
    assert metrics.average_lines_per_scene == pytest.approx(2.0)

    text = format_story_metrics(metrics)
    assert "Scenes: 5 (3 endings)" in text


def test_metrics_for_empty_novel() -> None:
    metrics = compute_story_metrics(VisualNovel(title="Empty", start_scene_id="a"))

    assert metrics.scene_count == 0
    assert metrics.average_choices_per_scene == 0.0
    assert metrics.max_choices_in_scene == 0


def test_main_prints_reports_for_demo(capsys: pytest.CaptureFixture[str]) -> None:
    assert main([]) == 0

    output = capsys.readouterr().out
    assert "Story Metrics" in output
    assert "Scene Reachability" in output
    assert "Integrity Check" in output
