"""Test configuration for the novelgraph project."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from collections.abc import Mapping, Sequence
from typing import Any

import pytest

from novelgraph.llm import LLMClient, LLMMessage, LLMResponse
from novelgraph.model import (
    Character,
    Choice,
    DialogueLine,
    Expression,
    Scene,
    VisualNovel,
)
from novelgraph.persistence import load_demo_novel


class MockLLMClient(LLMClient):
    """Deterministic LLM client used in tests to avoid real API calls."""

    def __init__(
        self,
        responses: Sequence[LLMResponse | str | Exception] | None = None,
    ) -> None:
        self.calls: list[list[LLMMessage]] = []
        self._responses: list[LLMResponse | Exception] = []

        if responses:
            for response in responses:
                self.queue_response(response)

    def queue_response(
        self,
        response: LLMResponse | str | Exception,
        *,
        role: str = "assistant",
        usage: Mapping[str, int] | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        """Append a response (or an error to raise) for the next call."""

        if isinstance(response, (LLMResponse, Exception)):
            payload = response
        else:
            message = LLMMessage(role=role, content=response)
            payload = LLMResponse(
                message=message,
                usage=dict(usage or {}),
                metadata=dict(metadata or {}),
            )

        self._responses.append(payload)

    def complete(
        self,
        messages: Sequence[LLMMessage],
        *,
        temperature: float | None = None,
    ) -> LLMResponse:
        del temperature  # This mock ignores sampling parameters.

        self.calls.append(list(messages))
        if not self._responses:
            raise AssertionError(
                "MockLLMClient expected a queued response but none remain",
            )

        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture()
def mock_llm_client() -> MockLLMClient:
    """Return a deterministic mock client for use in tests."""

    return MockLLMClient()


@pytest.fixture()
def make_mock_llm_client() -> Any:
    """Factory fixture for creating mock LLM clients with canned responses."""

    def _factory(
        responses: Sequence[LLMResponse | str | Exception] | None = None,
    ) -> MockLLMClient:
        return MockLLMClient(responses=responses)

    return _factory


def make_scene(
    scene_id: str,
    *targets: str,
    name: str | None = None,
    lines: Sequence[str] = ("...",),
) -> Scene:
    """Build a narration-only scene whose choices lead to ``targets``."""

    return Scene(
        id=scene_id,
        name=name if name is not None else scene_id,
        dialogue=tuple(DialogueLine(text=text) for text in lines),
        choices=tuple(Choice(text=f"to {target}", next_scene_id=target) for target in targets),
    )


@pytest.fixture()
def build_scene() -> Any:
    """Expose :func:`make_scene` to tests."""

    return make_scene


@pytest.fixture()
def demo_novel() -> VisualNovel:
    return load_demo_novel()


@pytest.fixture()
def branching_novel() -> VisualNovel:
    """A -> {B, C}; B is an ending; C loops back to A."""

    return VisualNovel(
        title="Branches",
        start_scene_id="A",
        scenes=(
            make_scene("A", "B", "C"),
            make_scene("B"),
            make_scene("C", "A"),
        ),
    )


@pytest.fixture()
def cast_novel() -> VisualNovel:
    """Two characters sharing a two-scene story."""

    hero = Character(
        id="hero",
        name="Hero",
        expressions=(
            Expression(id="calm", name="Calm", image_address="hero-calm.png"),
            Expression(id="angry", name="Angry", image_address="hero-angry.png"),
        ),
        default_expression_id="calm",
    )
    rival = Character(
        id="rival",
        name="Rival",
        expressions=(Expression(id="smirk", name="Smirk", image_address=""),),
        default_expression_id="smirk",
    )
    return VisualNovel(
        title="Rivals",
        start_scene_id="meet",
        characters=(hero, rival),
        scenes=(
            Scene(
                id="meet",
                name="Meeting",
                background_address="street.png",
                present_character_ids=("hero", "rival"),
                dialogue=(
                    DialogueLine(text="Two figures meet."),
                    DialogueLine(character_id="hero", expression_id="angry", text="You again."),
                    DialogueLine(character_id="rival", text="Me again."),
                ),
                choices=(Choice(text="Fight", next_scene_id="fight"),),
                authoring_prompt="Two rivals meet on a rainy street.",
            ),
            Scene(
                id="fight",
                name="Fight",
                present_character_ids=("hero",),
                dialogue=(DialogueLine(character_id="hero", text="Have at you!"),),
            ),
        ),
    )


__all__ = [
    "MockLLMClient",
    "make_scene",
    "build_scene",
    "mock_llm_client",
    "make_mock_llm_client",
    "demo_novel",
    "branching_novel",
    "cast_novel",
]
