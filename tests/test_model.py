"""Tests for the story graph entities."""

from __future__ import annotations

import pytest

from novelgraph.model import (
    Character,
    Choice,
    DialogueLine,
    Expression,
    Scene,
    VisualNovel,
)


def test_lookups_and_predicates(cast_novel: VisualNovel) -> None:
    assert cast_novel.scene("meet") is cast_novel.scenes[0]
    assert cast_novel.scene("missing") is None
    assert cast_novel.scene(None) is None
    assert cast_novel.character("rival") is cast_novel.characters[1]
    assert cast_novel.start_scene is cast_novel.scenes[0]

    assert cast_novel.scene_exists("fight")
    assert not cast_novel.scene_exists("nowhere")
    assert cast_novel.character_exists("hero")
    assert not cast_novel.character_exists(None)
    assert cast_novel.expression_exists("hero", "angry")
    assert not cast_novel.expression_exists("hero", "smirk")
    assert not cast_novel.expression_exists("ghost", "calm")

    assert cast_novel.scene_ids == ("meet", "fight")
    assert cast_novel.character_ids == ("hero", "rival")


def test_duplicate_scene_ids_are_rejected() -> None:
    with pytest.raises(ValueError, match="Duplicate scene id"):
        VisualNovel(
            title="Twice",
            start_scene_id="a",
            scenes=(Scene(id="a", name="A"), Scene(id="a", name="A again")),
        )


def test_duplicate_character_and_expression_ids_are_rejected() -> None:
    with pytest.raises(ValueError, match="duplicate expression id"):
        Character(
            id="hero",
            name="Hero",
            expressions=(Expression(id="e", name="One"), Expression(id="e", name="Two")),
        )

    hero = Character(id="hero", name="Hero")
    with pytest.raises(ValueError, match="Duplicate character id"):
        VisualNovel(title="Twins", start_scene_id="a", characters=(hero, hero))


def test_identifiers_must_be_non_empty_strings() -> None:
    with pytest.raises(ValueError):
        Scene(id="   ", name="Blank")
    with pytest.raises(TypeError):
        Choice(text="Go", next_scene_id=None)  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        VisualNovel(title="No start", start_scene_id="")


def test_identifiers_are_stripped() -> None:
    scene = Scene(id="  intro ", name="Intro")

    assert scene.id == "intro"


def test_narration_drops_expression() -> None:
    line = DialogueLine(character_id=None, expression_id="smile", text="Wind howls.")

    assert line.is_narration
    assert line.expression_id is None


def test_scene_deduplicates_present_characters_in_order() -> None:
    scene = Scene(id="s", name="S", present_character_ids=("b", "a", "b"))

    assert scene.present_character_ids == ("b", "a")
    assert scene.is_present("a")
    assert not scene.is_present(None)


def test_scene_ending_and_last_line() -> None:
    ending = Scene(id="end", name="End", dialogue=(DialogueLine(text="x"), DialogueLine(text="y")))
    branching = Scene(
        id="fork",
        name="Fork",
        choices=(Choice(text="On", next_scene_id="end"),),
    )

    assert ending.is_ending
    assert ending.last_line_index == 1
    assert not branching.is_ending
    assert branching.last_line_index == 0


def test_default_expression_resolution(cast_novel: VisualNovel) -> None:
    hero = cast_novel.character("hero")
    assert hero is not None
    assert hero.default_expression is not None
    assert hero.default_expression.id == "calm"
    assert hero.expression("angry") is not None
    assert hero.expression(None) is None

    dangling = Character(
        id="ghost",
        name="Ghost",
        expressions=(Expression(id="boo", name="Boo"),),
        default_expression_id="gone",
    )
    assert dangling.default_expression is None


def test_entities_are_immutable(cast_novel: VisualNovel) -> None:
    with pytest.raises(AttributeError):
        cast_novel.title = "Changed"  # type: ignore[misc]


def test_equality_ignores_cached_indexes(cast_novel: VisualNovel) -> None:
    clone = VisualNovel(
        title=cast_novel.title,
        start_scene_id=cast_novel.start_scene_id,
        characters=list(cast_novel.characters),
        scenes=list(cast_novel.scenes),
    )

    assert clone == cast_novel
    assert isinstance(clone.scenes, tuple)
