"""Structural analysis of story graphs: reachability, integrity and metrics."""

from __future__ import annotations

import argparse
import logging
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from .model import VisualNovel

LOGGER = logging.getLogger(__name__)

MISSING_START_SCENE = "missing_start_scene"
DANGLING_CHOICE = "dangling_choice"


@dataclass(frozen=True)
class StructuralWarning:
    """A structural problem found while walking the graph.

    ``choice_index`` is ``None`` for warnings that concern the scene as a
    whole, such as a start scene id that does not resolve.
    """

    kind: str
    scene_id: str
    choice_index: int | None = None


@dataclass(frozen=True)
class ReachabilityReport:
    """Which scenes can be visited from the start scene."""

    start_scene_id: str
    reachable: tuple[str, ...]
    orphans: tuple[str, ...]
    warnings: tuple[StructuralWarning, ...] = ()

    @property
    def reachable_count(self) -> int:
        return len(self.reachable)

    @property
    def orphan_count(self) -> int:
        return len(self.orphans)

    @property
    def total_scene_count(self) -> int:
        return self.reachable_count + self.orphan_count

    @property
    def fully_reachable(self) -> bool:
        """Return ``True`` if every scene can be visited."""

        return self.orphan_count == 0 and self.reachable_count > 0

    @property
    def start_scene_missing(self) -> bool:
        return any(warning.kind == MISSING_START_SCENE for warning in self.warnings)

    def is_reachable(self, scene_id: str) -> bool:
        return scene_id in self.reachable


@dataclass(frozen=True)
class IntegrityIssue:
    """A dangling or inconsistent reference inside the novel."""

    kind: str
    scene_id: str | None = None
    character_id: str | None = None
    index: int | None = None
    reference: str | None = None


@dataclass(frozen=True)
class IntegrityReport:
    """Summary of data-integrity conditions found in a snapshot."""

    issues: tuple[IntegrityIssue, ...]
    structural_warnings: tuple[StructuralWarning, ...]

    @property
    def issue_count(self) -> int:
        return len(self.issues) + len(self.structural_warnings)

    @property
    def has_issues(self) -> bool:
        return self.issue_count > 0

    def issues_of_kind(self, kind: str) -> tuple[IntegrityIssue, ...]:
        return tuple(issue for issue in self.issues if issue.kind == kind)


@dataclass(frozen=True)
class StoryMetrics:
    """Headline counts describing the breadth of a novel."""

    scene_count: int
    ending_count: int
    choice_count: int
    dialogue_line_count: int
    narration_line_count: int
    character_count: int
    expression_count: int
    max_choices_in_scene: int

    @property
    def average_choices_per_scene(self) -> float:
        return _safe_average(self.choice_count, self.scene_count)

    @property
    def average_lines_per_scene(self) -> float:
        return _safe_average(self.dialogue_line_count, self.scene_count)


def _safe_average(total: int, count: int) -> float:
    if count == 0:
        return 0.0
    return total / count


def _dangling_choice_warnings(novel: VisualNovel) -> list[StructuralWarning]:
    warnings: list[StructuralWarning] = []
    for scene in novel.scenes:
        for index, choice in enumerate(scene.choices):
            if not novel.scene_exists(choice.next_scene_id):
                warnings.append(
                    StructuralWarning(
                        kind=DANGLING_CHOICE, scene_id=scene.id, choice_index=index
                    )
                )
    return warnings


def analyze_reachability(novel: VisualNovel) -> ReachabilityReport:
    """Walk choices breadth-first from the start scene.

    Choices that point at scenes which no longer exist are skipped and
    reported as warnings. A start scene id that does not resolve yields an
    empty reachable set rather than an exception.
    """

    warnings: list[StructuralWarning] = []
    reachable: list[str] = []

    if novel.scene_exists(novel.start_scene_id):
        seen = {novel.start_scene_id}
        queue = deque([novel.start_scene_id])
        while queue:
            current = queue.popleft()
            reachable.append(current)
            scene = novel.scene(current)
            if scene is None:
                continue
            for choice in scene.choices:
                target = choice.next_scene_id
                if target in seen or not novel.scene_exists(target):
                    continue
                seen.add(target)
                queue.append(target)
    else:
        LOGGER.warning("Start scene '%s' does not exist.", novel.start_scene_id)
        warnings.append(
            StructuralWarning(kind=MISSING_START_SCENE, scene_id=novel.start_scene_id)
        )

    dangling = _dangling_choice_warnings(novel)
    if dangling:
        LOGGER.warning("Skipped %d choice(s) with missing targets.", len(dangling))
    warnings.extend(dangling)

    reachable_set = set(reachable)
    orphans = tuple(scene.id for scene in novel.scenes if scene.id not in reachable_set)

    return ReachabilityReport(
        start_scene_id=novel.start_scene_id,
        reachable=tuple(reachable),
        orphans=orphans,
        warnings=tuple(warnings),
    )


def assess_integrity(novel: VisualNovel) -> IntegrityReport:
    """Collect every dangling or inconsistent reference in ``novel``."""

    issues: list[IntegrityIssue] = []

    for character in novel.characters:
        if not character.expressions:
            issues.append(
                IntegrityIssue(kind="character_without_expressions", character_id=character.id)
            )
        if (
            character.default_expression_id is not None
            and character.default_expression is None
        ):
            issues.append(
                IntegrityIssue(
                    kind="unknown_default_expression",
                    character_id=character.id,
                    reference=character.default_expression_id,
                )
            )

    for scene in novel.scenes:
        if not scene.dialogue:
            issues.append(IntegrityIssue(kind="scene_without_dialogue", scene_id=scene.id))

        for character_id in scene.present_character_ids:
            if not novel.character_exists(character_id):
                issues.append(
                    IntegrityIssue(
                        kind="unknown_present_character",
                        scene_id=scene.id,
                        reference=character_id,
                    )
                )

        for index, line in enumerate(scene.dialogue):
            if line.character_id is None:
                continue
            if not novel.character_exists(line.character_id):
                issues.append(
                    IntegrityIssue(
                        kind="unknown_speaker",
                        scene_id=scene.id,
                        index=index,
                        reference=line.character_id,
                    )
                )
                continue
            if not scene.is_present(line.character_id):
                issues.append(
                    IntegrityIssue(
                        kind="speaker_not_present",
                        scene_id=scene.id,
                        character_id=line.character_id,
                        index=index,
                    )
                )
            if line.expression_id is not None and not novel.expression_exists(
                line.character_id, line.expression_id
            ):
                issues.append(
                    IntegrityIssue(
                        kind="unknown_line_expression",
                        scene_id=scene.id,
                        character_id=line.character_id,
                        index=index,
                        reference=line.expression_id,
                    )
                )

    reachability = analyze_reachability(novel)
    return IntegrityReport(
        issues=tuple(issues), structural_warnings=reachability.warnings
    )


def compute_story_metrics(novel: VisualNovel) -> StoryMetrics:
    choice_counts = [len(scene.choices) for scene in novel.scenes]
    lines = [line for scene in novel.scenes for line in scene.dialogue]
    return StoryMetrics(
        scene_count=len(novel.scenes),
        ending_count=sum(1 for scene in novel.scenes if scene.is_ending),
        choice_count=sum(choice_counts),
        dialogue_line_count=len(lines),
        narration_line_count=sum(1 for line in lines if line.is_narration),
        character_count=len(novel.characters),
        expression_count=sum(len(character.expressions) for character in novel.characters),
        max_choices_in_scene=max(choice_counts, default=0),
    )


def _scene_label(novel: VisualNovel, scene_id: str) -> str:
    scene = novel.scene(scene_id)
    if scene is None or not scene.name:
        return scene_id
    return f"{scene.name} ({scene_id})"


def format_reachability_report(novel: VisualNovel, report: ReachabilityReport) -> str:
    """Return a human-friendly report describing scene reachability."""

    lines = [
        "Scene Reachability",
        "==================",
        f"Start scene: {report.start_scene_id}",
        f"Reachable scenes: {report.reachable_count} / {report.total_scene_count}",
    ]

    if report.start_scene_missing:
        lines.append("Error: the start scene does not exist.")

    if report.orphans:
        lines.append("Unconnected scenes:")
        lines.extend(f"- {_scene_label(novel, scene_id)}" for scene_id in report.orphans)
    elif report.reachable:
        lines.append("All scenes are reachable from the start scene.")

    dangling = [w for w in report.warnings if w.kind == DANGLING_CHOICE]
    if dangling:
        lines.append("Choices pointing at missing scenes:")
        lines.extend(
            f"- {warning.scene_id} :: choice #{warning.choice_index + 1}"
            for warning in dangling
            if warning.choice_index is not None
        )

    return "\n".join(lines)


def format_integrity_report(report: IntegrityReport) -> str:
    lines = [
        "Integrity Check",
        "===============",
        f"Total issues detected: {report.issue_count}",
    ]
    for issue in report.issues:
        details = [
            f"{key}={value}"
            for key, value in (
                ("scene", issue.scene_id),
                ("character", issue.character_id),
                ("index", issue.index),
                ("reference", issue.reference),
            )
            if value is not None
        ]
        lines.append(f"- {issue.kind}: " + ", ".join(details))
    for warning in report.structural_warnings:
        suffix = "" if warning.choice_index is None else f", choice={warning.choice_index}"
        lines.append(f"- {warning.kind}: scene={warning.scene_id}{suffix}")

    if not report.has_issues:
        lines.append("No integrity issues detected.")

    return "\n".join(lines)


def format_story_metrics(metrics: StoryMetrics) -> str:
    return "\n".join(
        [
            "Story Metrics",
            "=============",
            f"Scenes: {metrics.scene_count} ({metrics.ending_count} endings)",
            f"Choices: {metrics.choice_count} "
            f"(avg {metrics.average_choices_per_scene:.2f}, max {metrics.max_choices_in_scene})",
            f"Dialogue lines: {metrics.dialogue_line_count} "
            f"({metrics.narration_line_count} narration, "
            f"avg {metrics.average_lines_per_scene:.2f} per scene)",
            f"Characters: {metrics.character_count} "
            f"({metrics.expression_count} expressions)",
        ]
    )


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Report reachability, integrity and metrics for a novel file."
    )
    parser.add_argument(
        "novel_file",
        nargs="?",
        type=Path,
        help="Path to an exported novel JSON file. Defaults to the bundled demo.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point used by ``python -m novelgraph.analytics``."""

    from .persistence import load_demo_novel, load_novel_from_file

    args = _parse_args(argv)
    if args.novel_file is None:
        novel = load_demo_novel()
    else:
        novel = load_novel_from_file(args.novel_file)

    print(format_story_metrics(compute_story_metrics(novel)))
    print()
    print(format_reachability_report(novel, analyze_reachability(novel)))
    print()
    print(format_integrity_report(assess_integrity(novel)))
    return 0


__all__ = [
    "MISSING_START_SCENE",
    "DANGLING_CHOICE",
    "StructuralWarning",
    "ReachabilityReport",
    "IntegrityIssue",
    "IntegrityReport",
    "StoryMetrics",
    "analyze_reachability",
    "assess_integrity",
    "compute_story_metrics",
    "format_reachability_report",
    "format_integrity_report",
    "format_story_metrics",
    "main",
]


if __name__ == "__main__":  # pragma: no cover - convenience CLI
    raise SystemExit(main())
