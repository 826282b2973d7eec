"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from branchwright.models.story import StoryGraph
from tests.fixtures.story_fixtures import make_cast, make_graph, make_messy_document, node


@pytest.fixture(autouse=True)
def clear_language_override(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's BW_LANGUAGE from leaking into tests."""
    monkeypatch.delenv("BW_LANGUAGE", raising=False)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def messy_document() -> dict[str, Any]:
    """Raw generator output with legacy keys, aliases, cycles and duplicates."""
    return make_messy_document()


@pytest.fixture
def linear_graph() -> StoryGraph:
    """start -> middle -> ending_good, already valid."""
    return make_graph(
        node("start", targets=["middle"]),
        node("middle", targets=["ending_good"]),
    )


@pytest.fixture
def cast_graph() -> StoryGraph:
    """A valid graph with a three-person cast and no side effects."""
    return make_graph(
        node("start", targets=["ending_neutral"], characters=["Lin", "Mara"]),
        characters=make_cast(),
    )
