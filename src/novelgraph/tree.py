"""Display tree of the story graph for editors."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Iterator, List, Tuple

from .analytics import StructuralWarning, analyze_reachability
from .model import Choice, Scene, VisualNovel


@dataclass(frozen=True)
class SceneTreeNode:
    """A scene shown in the tree, annotated with the choice that led to it.

    Loop nodes stand in for a scene that is already an ancestor on the current
    path; they never have children.
    """

    scene_id: str
    scene_name: str
    incoming_choice_text: str | None = None
    is_loop: bool = False
    is_start: bool = False
    children: Tuple["SceneTreeNode", ...] = ()


@dataclass(frozen=True)
class SceneTree:
    """Tree rooted at the start scene plus the scenes it cannot reach."""

    root: SceneTreeNode | None
    orphans: Tuple[SceneTreeNode, ...] = ()
    warnings: Tuple[StructuralWarning, ...] = ()


@dataclass
class _Frame:
    scene: Scene
    incoming_choice_text: str | None
    ancestors: FrozenSet[str]
    is_start: bool
    pending: Iterator[Choice] = field(init=False)
    children: List[SceneTreeNode] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.pending = iter(self.scene.choices)

    def freeze(self) -> SceneTreeNode:
        return SceneTreeNode(
            scene_id=self.scene.id,
            scene_name=self.scene.name,
            incoming_choice_text=self.incoming_choice_text,
            is_start=self.is_start,
            children=tuple(self.children),
        )


def _expand(novel: VisualNovel, start: Scene) -> SceneTreeNode:
    """Expand ``start`` depth-first with an explicit stack.

    Each frame carries only the ids on its own path, so a scene reached along
    two different paths shows up twice while cycles end in a loop node.
    """

    stack = [
        _Frame(
            scene=start,
            incoming_choice_text=None,
            ancestors=frozenset({start.id}),
            is_start=start.id == novel.start_scene_id,
        )
    ]

    while True:
        frame = stack[-1]
        choice = next(frame.pending, None)
        if choice is None:
            stack.pop()
            node = frame.freeze()
            if not stack:
                return node
            stack[-1].children.append(node)
            continue

        target = novel.scene(choice.next_scene_id)
        if target is None:
            continue

        if target.id in frame.ancestors:
            frame.children.append(
                SceneTreeNode(
                    scene_id=target.id,
                    scene_name=target.name,
                    incoming_choice_text=choice.text,
                    is_loop=True,
                    is_start=target.id == novel.start_scene_id,
                )
            )
            continue

        stack.append(
            _Frame(
                scene=target,
                incoming_choice_text=choice.text,
                ancestors=frame.ancestors | {target.id},
                is_start=target.id == novel.start_scene_id,
            )
        )


def render_tree(novel: VisualNovel) -> SceneTree:
    """Build the editor tree for ``novel``.

    Orphaned scenes are returned as a flat list of leaves in authoring order.
    When the start scene is missing the tree has no root and every scene is an
    orphan.
    """

    reachability = analyze_reachability(novel)
    start = novel.start_scene
    root = _expand(novel, start) if start is not None else None

    orphans = []
    for scene_id in reachability.orphans:
        scene = novel.scene(scene_id)
        if scene is not None:
            orphans.append(SceneTreeNode(scene_id=scene.id, scene_name=scene.name))

    return SceneTree(root=root, orphans=tuple(orphans), warnings=reachability.warnings)


def iter_tree(node: SceneTreeNode) -> Iterator[Tuple[int, SceneTreeNode]]:
    """Yield ``(depth, node)`` pairs in pre-order."""

    stack = [(0, node)]
    while stack:
        depth, current = stack.pop()
        yield depth, current
        for child in reversed(current.children):
            stack.append((depth + 1, child))


def _describe(node: SceneTreeNode) -> str:
    name = node.scene_name or node.scene_id
    prefix = f'"{node.incoming_choice_text}" -> ' if node.incoming_choice_text is not None else ""
    if node.is_loop:
        return f"{prefix}{name} (loop)"
    marker = "[start] " if node.is_start else ""
    return f"{prefix}{marker}{name}"


def format_scene_tree(tree: SceneTree) -> str:
    """Render ``tree`` as an indented outline."""

    lines: list[str] = []
    if tree.root is None:
        lines.append("Error: start scene not found!")
    else:
        for depth, node in iter_tree(tree.root):
            lines.append("  " * depth + _describe(node))

    if tree.orphans:
        lines.append("")
        lines.append("Unconnected scenes:")
        lines.extend(f"- {node.scene_name or node.scene_id}" for node in tree.orphans)

    return "\n".join(lines)


__all__ = [
    "SceneTreeNode",
    "SceneTree",
    "render_tree",
    "iter_tree",
    "format_scene_tree",
]
