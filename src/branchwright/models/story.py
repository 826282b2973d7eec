"""Typed story graph models.

These models are the single in-memory shape of a branching story once the
generator's loose document has been decoded (see ``models/raw.py``). Every
repair stage consumes and produces a ``StoryGraph``.

Wire names are camelCase (``nextNodeId``, ``endingKey``, ``affinityEffect``)
so a repaired graph serializes back into the document shape the playback
client expects. Python attribute names follow the domain vocabulary:

- node: a single narrative beat with content and outgoing choices
- choice: a labeled edge to another node or to an ending
- ending: a terminal state (good / neutral / bad)
- side effect: a relationship delta attached to a choice
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Reserved keys
# ---------------------------------------------------------------------------

# Entry node key; legacy spellings are folded onto it by the key normalizer.
ENTRY_NODE_KEY = "start"

# Placeholder target used only when the graph has no endings at all.
SENTINEL_TARGET = "END"

ENDING_GOOD = "ending_good"
ENDING_NEUTRAL = "ending_neutral"
ENDING_BAD = "ending_bad"
CANONICAL_ENDING_KEYS = (ENDING_GOOD, ENDING_NEUTRAL, ENDING_BAD)

# Hard cap on distinct endings after canonicalization.
MAX_ENDINGS = 5

# Closed interval for SideEffect.delta.
DELTA_MIN = -20
DELTA_MAX = 20

EndingType = Literal["good", "neutral", "bad"]


class _WireModel(BaseModel):
    """Base for models that accept both camelCase aliases and field names."""

    model_config = ConfigDict(populate_by_name=True)


class SideEffect(_WireModel):
    """A relationship delta applied to one person when a choice is taken.

    Attributes:
        character: Target person, by id or name before sanitization and by
            name afterwards.
        delta: Relationship change, clamped into ``[DELTA_MIN, DELTA_MAX]``.
    """

    character: str = Field(alias="characterId")
    delta: int


class Choice(_WireModel):
    """A labeled edge from a node to another node or ending."""

    text: str
    target: str = Field(alias="nextNodeId")
    effect: SideEffect | None = Field(default=None, alias="affinityEffect")


class StoryNode(_WireModel):
    """A single narrative beat.

    Attributes:
        id: Should equal the node's key in ``StoryGraph.nodes``.
        content: Prose shown to the player.
        ending_key: Terminal marker; when it names an existing ending the
            node has no outgoing choices.
        level: Optional tier/depth hint from the generator.
        characters: Names of the people present in this beat.
        choices: Outgoing choices, in display order.
    """

    id: str
    content: str
    ending_key: str | None = Field(default=None, alias="endingKey")
    level: int | None = None
    characters: list[str] | None = None
    choices: list[Choice] = Field(default_factory=list)


class Ending(_WireModel):
    """A terminal narrative state."""

    category: EndingType = Field(default="neutral", alias="type")
    description: str = ""


class Person(_WireModel):
    """A member of the story's cast, keyed by display name after normalization."""

    id: str
    name: str
    gender: str = "Unknown"
    age: int = 0
    role: str = ""
    background: str = ""
    avatar_path: str | None = Field(default=None, alias="avatarPath")
    is_primary: bool = Field(default=False, alias="isMain")


class StoryMeta(_WireModel):
    """Descriptive metadata carried alongside the graph."""

    logline: str = ""
    synopsis: str = ""
    target_runtime_minutes: int = Field(default=0, alias="targetRuntimeMinutes")
    genre: str = ""
    language: str = ""


class CastMember(_WireModel):
    """An entry of the requester's own character roster (the cast allow-list)."""

    name: str
    description: str = ""
    gender: str = ""
    is_main: bool = Field(default=False, alias="isMain")


class StoryGraph(_WireModel):
    """Root aggregate: one branching story.

    Map keys are unique by construction. Iteration order of the maps is
    never relied upon by the repair stages; they sort keys explicitly.
    """

    title: str = "Untitled Project"
    meta: StoryMeta = Field(default_factory=StoryMeta)
    nodes: dict[str, StoryNode] = Field(default_factory=dict)
    endings: dict[str, Ending] = Field(default_factory=dict)
    characters: dict[str, Person] = Field(default_factory=dict)

    def to_document(self) -> dict[str, Any]:
        """Serialize to the camelCase document shape.

        Absent optionals (``affinityEffect``, ``endingKey``, ...) are
        omitted rather than emitted as ``null``.
        """
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def ordered_node_keys(self) -> list[str]:
        """Return node keys with the entry node first, then lexicographic."""
        keys = sorted(self.nodes)
        if ENTRY_NODE_KEY in self.nodes:
            keys.remove(ENTRY_NODE_KEY)
            keys.insert(0, ENTRY_NODE_KEY)
        return keys
