"""Tests for the editor scene tree."""

from __future__ import annotations

from typing import Any

from novelgraph.analytics import DANGLING_CHOICE
from novelgraph.model import VisualNovel
from novelgraph.tree import format_scene_tree, iter_tree, render_tree


def test_branching_example_shape(branching_novel: VisualNovel) -> None:
    tree = render_tree(branching_novel)

    root = tree.root
    assert root is not None
    assert (root.scene_id, root.is_start, root.incoming_choice_text) == ("A", True, None)
    assert [child.scene_id for child in root.children] == ["B", "C"]

    leaf_b, node_c = root.children
    assert leaf_b.children == ()
    assert not leaf_b.is_loop
    assert leaf_b.incoming_choice_text == "to B"

    assert len(node_c.children) == 1
    loop = node_c.children[0]
    assert loop.scene_id == "A"
    assert loop.is_loop
    assert loop.children == ()
    assert tree.orphans == ()


def test_self_loop_terminates(build_scene: Any) -> None:
    novel = VisualNovel(title="Loop", start_scene_id="a", scenes=(build_scene("a", "a"),))

    tree = render_tree(novel)

    assert tree.root is not None
    assert [(node.scene_id, node.is_loop) for _, node in iter_tree(tree.root)] == [
        ("a", False),
        ("a", True),
    ]


def test_mutual_cycle_terminates(build_scene: Any) -> None:
    novel = VisualNovel(
        title="Ping pong",
        start_scene_id="ping",
        scenes=(build_scene("ping", "pong"), build_scene("pong", "ping", "pong")),
    )

    tree = render_tree(novel)

    assert tree.root is not None
    nodes = [(depth, node.scene_id, node.is_loop) for depth, node in iter_tree(tree.root)]
    assert nodes == [
        (0, "ping", False),
        (1, "pong", False),
        (2, "ping", True),
        (2, "pong", True),
    ]


def test_scene_reached_by_two_paths_appears_twice(build_scene: Any) -> None:
    novel = VisualNovel(
        title="Diamond",
        start_scene_id="top",
        scenes=(
            build_scene("top", "left", "right"),
            build_scene("left", "bottom"),
            build_scene("right", "bottom"),
            build_scene("bottom"),
        ),
    )

    tree = render_tree(novel)

    assert tree.root is not None
    bottoms = [node for _, node in iter_tree(tree.root) if node.scene_id == "bottom"]
    assert len(bottoms) == 2
    assert all(node.incoming_choice_text == "to bottom" for node in bottoms)
    assert not any(node.is_loop for node in bottoms)


def test_long_chain_does_not_recurse(build_scene: Any) -> None:
    count = 3000
    scenes = tuple(
        build_scene(f"s{index}", *((f"s{index + 1}",) if index + 1 < count else ()))
        for index in range(count)
    )
    novel = VisualNovel(title="Chain", start_scene_id="s0", scenes=scenes)

    tree = render_tree(novel)

    assert tree.root is not None
    depths = [depth for depth, _ in iter_tree(tree.root)]
    assert max(depths) == count - 1


def test_dangling_choices_are_skipped(build_scene: Any) -> None:
    novel = VisualNovel(
        title="Dangling",
        start_scene_id="a",
        scenes=(build_scene("a", "gone", "b"), build_scene("b")),
    )

    tree = render_tree(novel)

    assert tree.root is not None
    assert [child.scene_id for child in tree.root.children] == ["b"]
    assert [warning.kind for warning in tree.warnings] == [DANGLING_CHOICE]


def test_orphans_are_flat_leaves(build_scene: Any) -> None:
    novel = VisualNovel(
        title="Orphans",
        start_scene_id="a",
        scenes=(build_scene("a"), build_scene("x", "y"), build_scene("y")),
    )

    tree = render_tree(novel)

    assert [node.scene_id for node in tree.orphans] == ["x", "y"]
    assert all(node.children == () for node in tree.orphans)


def test_missing_start_scene_has_no_root(build_scene: Any) -> None:
    novel = VisualNovel(title="Lost", start_scene_id="gone", scenes=(build_scene("a"),))

    tree = render_tree(novel)

    assert tree.root is None
    assert [node.scene_id for node in tree.orphans] == ["a"]
    assert format_scene_tree(tree).startswith("Error: start scene not found!")


def test_format_scene_tree_outline(branching_novel: VisualNovel) -> None:
    text = format_scene_tree(render_tree(branching_novel))

    assert text.splitlines() == [
        "[start] A",
        '  "to B" -> B',
        '  "to C" -> C',
        '    "to A" -> A (loop)',
    ]
