"""Tests for generative collaborators and normalisation of their output."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Mapping, Sequence

import pytest

from novelgraph import editing
from novelgraph.generation import (
    GenerationError,
    LLMStoryWriter,
    PlaceholderBackgroundGenerator,
    StoryGenerator,
    generate_background,
    generate_dialogue,
    generate_novel,
)
from novelgraph.llm import LLMClientError, LLMRetryPolicy
from novelgraph.model import Character, DialogueLine, VisualNovel
from novelgraph.persistence import novel_to_payload

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from tests.conftest import MockLLMClient


class CannedStoryGenerator(StoryGenerator):
    """Returns fixed results and records what it was asked for."""

    def __init__(
        self,
        story: Mapping[str, Any] | Exception | None = None,
        dialogue: Sequence[DialogueLine] | Exception = (),
    ) -> None:
        self.story = story
        self.dialogue = dialogue
        self.requests: list[tuple[str, str, list[str]]] = []

    def generate_story(self, theme: str) -> Mapping[str, Any]:
        if isinstance(self.story, Exception):
            raise self.story
        assert self.story is not None
        return self.story

    def generate_scene_dialogue(
        self, scene_name: str, prompt: str, present_characters: Sequence[Character]
    ) -> Sequence[DialogueLine]:
        self.requests.append(
            (scene_name, prompt, [character.id for character in present_characters])
        )
        if isinstance(self.dialogue, Exception):
            raise self.dialogue
        return self.dialogue


class FailingBackgrounds:
    def generate_scene_background(self, prompt: str) -> str:
        raise ConnectionError("image service down")


def test_generate_novel_validates_the_story(demo_novel: VisualNovel) -> None:
    generator = CannedStoryGenerator(story=novel_to_payload(demo_novel))

    assert generate_novel("dragons", generator) == demo_novel


def test_generate_novel_requires_a_theme(demo_novel: VisualNovel) -> None:
    generator = CannedStoryGenerator(story=novel_to_payload(demo_novel))

    with pytest.raises(GenerationError, match="theme"):
        generate_novel("   ", generator)


def test_generate_novel_wraps_collaborator_failures() -> None:
    failure = RuntimeError("quota exceeded")

    with pytest.raises(GenerationError) as excinfo:
        generate_novel("space", CannedStoryGenerator(story=failure))

    assert excinfo.value.__cause__ is failure


def test_generate_novel_rejects_invalid_records() -> None:
    with pytest.raises(GenerationError, match="invalid"):
        generate_novel("space", CannedStoryGenerator(story={"title": "No scenes"}))


def test_generate_novel_rejects_missing_start_scene(demo_novel: VisualNovel) -> None:
    payload = novel_to_payload(demo_novel)
    payload["startSceneId"] = "scene_99"

    with pytest.raises(GenerationError, match="start scene"):
        generate_novel("dragons", CannedStoryGenerator(story=payload))


def test_generate_dialogue_normalises_lines(cast_novel: VisualNovel) -> None:
    generator = CannedStoryGenerator(
        dialogue=[
            DialogueLine(character_id="hero", expression_id="angry", text="Again!"),
            DialogueLine(character_id="stranger", text="Psst."),
            DialogueLine(text="Rain falls."),
        ]
    )

    updated = generate_dialogue(cast_novel, "meet", generator)

    meet = updated.scene("meet")
    assert meet is not None
    assert meet.dialogue == (
        DialogueLine(character_id="hero", text="Again!"),
        DialogueLine(text="Psst."),
        DialogueLine(text="Rain falls."),
    )
    assert generator.requests == [
        ("Meeting", "Two rivals meet on a rainy street.", ["hero", "rival"])
    ]
    original = cast_novel.scene("meet")
    assert original is not None
    assert len(original.dialogue) == 3


def test_generate_dialogue_requires_prompt(cast_novel: VisualNovel) -> None:
    generator = CannedStoryGenerator(dialogue=[DialogueLine(text="x")])

    with pytest.raises(GenerationError, match="authoring prompt"):
        generate_dialogue(cast_novel, "fight", generator)
    with pytest.raises(GenerationError, match="Unknown scene"):
        generate_dialogue(cast_novel, "nowhere", generator)


def test_generate_dialogue_rejects_empty_results(cast_novel: VisualNovel) -> None:
    with pytest.raises(GenerationError, match="no dialogue"):
        generate_dialogue(cast_novel, "meet", CannedStoryGenerator(dialogue=[]))


def test_generate_dialogue_wraps_failures(cast_novel: VisualNovel) -> None:
    generator = CannedStoryGenerator(dialogue=LLMClientError("timeout"))

    with pytest.raises(GenerationError, match="Failed to generate dialogue"):
        generate_dialogue(cast_novel, "meet", generator)


def test_generate_background(cast_novel: VisualNovel) -> None:
    updated = generate_background(
        cast_novel, "meet", PlaceholderBackgroundGenerator("generated.png")
    )

    meet = updated.scene("meet")
    assert meet is not None
    assert meet.background_address == "generated.png"

    with pytest.raises(GenerationError, match="background"):
        generate_background(cast_novel, "meet", FailingBackgrounds())

    blank_prompt = editing.set_scene_prompt(cast_novel, "meet", "   ")
    with pytest.raises(GenerationError, match="authoring prompt"):
        generate_background(blank_prompt, "meet", PlaceholderBackgroundGenerator())


def test_llm_story_writer_extracts_json(
    mock_llm_client: "MockLLMClient", demo_novel: VisualNovel
) -> None:
    body = json.dumps(novel_to_payload(demo_novel))
    mock_llm_client.queue_response(f"Here is your story:\n```json\n{body}\n```")
    writer = LLMStoryWriter(llm_client=mock_llm_client)

    novel = generate_novel("a friendly dragon", writer)

    assert novel == demo_novel
    system, user = mock_llm_client.calls[0]
    assert system.role == "system"
    assert 'theme "a friendly dragon"' in user.content


def test_llm_story_writer_retries_client_errors(
    make_mock_llm_client: Any, demo_novel: VisualNovel
) -> None:
    client = make_mock_llm_client(
        [LLMClientError("overloaded"), json.dumps(novel_to_payload(demo_novel))]
    )
    writer = LLMStoryWriter(
        llm_client=client, retry_policy=LLMRetryPolicy(max_attempts=2, initial_backoff=0)
    )

    assert generate_novel("dragons", writer).title == demo_novel.title
    assert len(client.calls) == 2


def test_llm_story_writer_rejects_unparseable_output(mock_llm_client: "MockLLMClient") -> None:
    mock_llm_client.queue_response("I would rather not.")
    writer = LLMStoryWriter(llm_client=mock_llm_client)

    with pytest.raises(GenerationError, match="valid JSON"):
        generate_novel("dragons", writer)


def test_llm_story_writer_dialogue(
    mock_llm_client: "MockLLMClient", cast_novel: VisualNovel
) -> None:
    mock_llm_client.queue_response(
        json.dumps(
            [
                {"characterId": "rival", "text": "Still here?"},
                {"characterId": None, "text": "Thunder rolls."},
                {"characterId": " ", "text": "Blank speaker."},
            ]
        )
    )
    writer = LLMStoryWriter(llm_client=mock_llm_client)

    updated = generate_dialogue(cast_novel, "meet", writer)

    meet = updated.scene("meet")
    assert meet is not None
    assert [line.character_id for line in meet.dialogue] == ["rival", None, None]
    prompt = mock_llm_client.calls[0][0].content
    assert "- Hero (id: hero)" in prompt
    assert '"Meeting"' in prompt


def test_llm_story_writer_dialogue_shape_errors(
    mock_llm_client: "MockLLMClient", cast_novel: VisualNovel
) -> None:
    mock_llm_client.queue_response('[{"characterId": "hero"}]')
    writer = LLMStoryWriter(llm_client=mock_llm_client)

    with pytest.raises(GenerationError, match="text"):
        generate_dialogue(cast_novel, "meet", writer)


def _consistent_story() -> dict[str, Any]:
    return {
        "title": "Lighthouse",
        "startSceneId": "s1",
        "characters": [
            {
                "id": "c1",
                "name": "Keeper",
                "defaultExpressionId": "e1",
                "expressions": [{"id": "e1", "name": "Default", "imageAddress": ""}],
            }
        ],
        "scenes": [
            {
                "id": "s1",
                "name": "Shore",
                "backgroundAddress": "",
                "presentCharacterIds": ["c1"],
                "dialogue": [{"characterId": "c1", "expressionId": None, "text": "Storm."}],
                "choices": [{"text": "Climb", "nextSceneId": "s2"}],
            },
            {
                "id": "s2",
                "name": "Lamp Room",
                "backgroundAddress": "",
                "presentCharacterIds": [],
                "dialogue": [{"characterId": None, "expressionId": None, "text": "Light."}],
                "choices": [],
            },
        ],
    }


def test_generate_novel_accepts_a_consistent_story() -> None:
    novel = generate_novel("lighthouse", CannedStoryGenerator(story=_consistent_story()))

    assert novel.title == "Lighthouse"


@pytest.mark.parametrize(
    ("mutate", "problem"),
    [
        (
            lambda story: story["scenes"][0].update(presentCharacterIds=[]),
            "speaker_not_present",
        ),
        (
            lambda story: story["characters"][0].update(
                expressions=[], defaultExpressionId=None
            ),
            "character_without_expressions",
        ),
        (
            lambda story: story["characters"][0].update(defaultExpressionId="nope"),
            "unknown_default_expression",
        ),
        (
            lambda story: story["scenes"][1].update(dialogue=[]),
            "scene_without_dialogue",
        ),
        (
            lambda story: story["scenes"][0]["dialogue"][0].update(expressionId="grin"),
            "unknown_line_expression",
        ),
        (
            lambda story: story["scenes"][0].update(
                choices=[{"text": "Swim", "nextSceneId": "s9"}]
            ),
            "dangling_choice",
        ),
    ],
)
def test_generate_novel_rejects_inconsistent_stories(mutate: Any, problem: str) -> None:
    story = _consistent_story()
    mutate(story)

    with pytest.raises(GenerationError, match=problem):
        generate_novel("lighthouse", CannedStoryGenerator(story=story))
