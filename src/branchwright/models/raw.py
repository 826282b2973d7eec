"""Decoding of the generator's loosely-typed document into a ``StoryGraph``.

The content generator is not trusted to respect its own schema. Fields show
up in several shapes and this module is the one place that accepts them:

- a node entry is an object, a bare string (its content), or an empty
  placeholder (``null``, ``{}``, blank string) that is dropped
- a text field may be a string or an array of strings (joined with ``\\n``)
- a list field may be an array or a single string (a one-element list)
- the cast may be a map keyed by anything or a plain list

Node entries are tagged with an explicit ``kind`` before validation so the
union is resolved once, here, instead of by shape-sniffing in later stages.
Nothing in ``decode_graph`` raises on a shape defect; only input that is not
a JSON object at all is rejected (``DocumentDecodeError``).
"""

from __future__ import annotations

import json
import math
import uuid
from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
)

from branchwright.models.story import (
    SENTINEL_TARGET,
    Choice,
    Ending,
    EndingType,
    Person,
    SideEffect,
    StoryGraph,
    StoryMeta,
    StoryNode,
)
from branchwright.observability.logging import get_logger

log = get_logger(__name__)

DEFAULT_LANGUAGE = "zh-CN"
DEFAULT_TITLE = "Untitled Project"
DEFAULT_CHOICE_TEXT = "Continue"
DEFAULT_CONTENT = "..."
UNKNOWN = "Unknown"

_ENDING_TYPE_WORDS: dict[str, EndingType] = {
    "good": "good",
    "favorable": "good",
    "favourable": "good",
    "positive": "good",
    "neutral": "neutral",
    "bad": "bad",
    "unfavorable": "bad",
    "unfavourable": "bad",
    "negative": "bad",
}

_NODE_FIELDS = frozenset(
    {"id", "nodeId", "node_id", "content", "text", "endingKey", "ending_key"}
    | {"level", "characters", "choices"}
)


class DocumentDecodeError(ValueError):
    """Raised when generator output is not a JSON object."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Cannot decode generator output: {reason}")


# ---------------------------------------------------------------------------
# Shape coercions
# ---------------------------------------------------------------------------


def _text_or_lines(value: Any) -> str | None:
    """Coerce ``str | list[str]`` into a single string."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "\n".join(str(v) for v in value if isinstance(v, (str, int, float)))
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _list_or_single(value: Any) -> list[str] | None:
    """Coerce ``list[str] | str`` into a list of strings."""
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(v) for v in value if isinstance(v, (str, int, float))]
    return None


def _loose_int(value: Any) -> int | None:
    """Accept ints, finite floats and numeric strings; anything else is absent."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
        return int(value) if math.isfinite(value) else None
    if isinstance(value, float) and math.isfinite(value):
        return int(value) if value.is_integer() else round(value)
    return None


def _objects_only(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


def _object_or_none(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def _string_keyed(value: Any) -> dict[str, Any]:
    if not isinstance(value, dict):
        return {}
    return {str(k): v for k, v in value.items()}


LooseText = Annotated[str | None, BeforeValidator(_text_or_lines)]
LooseList = Annotated[list[str] | None, BeforeValidator(_list_or_single)]
LooseInt = Annotated[int | None, BeforeValidator(_loose_int)]


class _RawModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Raw document models
# ---------------------------------------------------------------------------


class RawSideEffect(_RawModel):
    character_id: LooseText = Field(
        default=None, validation_alias=AliasChoices("characterId", "character_id", "character")
    )
    delta: LooseInt = None


class RawChoice(_RawModel):
    text: LooseText = None
    next_node_id: LooseText = Field(
        default=None, validation_alias=AliasChoices("nextNodeId", "next_node_id", "target")
    )
    affinity_effect: Annotated[RawSideEffect | None, BeforeValidator(_object_or_none)] = Field(
        default=None, validation_alias=AliasChoices("affinityEffect", "affinity_effect")
    )


class RawNodeObject(_RawModel):
    """A node entry that arrived as a proper object."""

    kind: Literal["object"] = "object"
    id: LooseText = None
    node_id: LooseText = Field(default=None, validation_alias=AliasChoices("nodeId", "node_id"))
    content: LooseText = Field(default=None, validation_alias=AliasChoices("content", "text"))
    ending_key: LooseText = Field(
        default=None, validation_alias=AliasChoices("endingKey", "ending_key")
    )
    level: LooseInt = None
    characters: LooseList = None
    choices: Annotated[list[RawChoice], BeforeValidator(_objects_only)] = Field(
        default_factory=list
    )


class RawNodeText(_RawModel):
    """A node entry that arrived as a bare string: the string is its content."""

    kind: Literal["text"] = "text"
    content: str


class RawNodeEmpty(_RawModel):
    """A placeholder node entry carrying nothing; dropped during decoding."""

    kind: Literal["empty"] = "empty"


RawNodeEntry = Annotated[RawNodeObject | RawNodeText | RawNodeEmpty, Field(discriminator="kind")]


def tag_node_entry(value: Any) -> dict[str, Any]:
    """Tag a raw node entry with its shape so the union resolves exhaustively."""
    if isinstance(value, str):
        if value.strip():
            return {"kind": "text", "content": value}
        return {"kind": "empty"}
    if isinstance(value, dict) and _NODE_FIELDS.intersection(value):
        return {**value, "kind": "object"}
    return {"kind": "empty"}


class RawPerson(_RawModel):
    id: LooseText = None
    name: LooseText = None
    gender: LooseText = None
    age: LooseInt = None
    role: LooseText = None
    background: LooseText = None
    description: LooseText = None
    avatar_path: LooseText = Field(
        default=None, validation_alias=AliasChoices("avatarPath", "avatar_path")
    )
    is_main: bool = Field(default=False, validation_alias=AliasChoices("isMain", "is_main"))

    @field_validator("is_main", mode="before")
    @classmethod
    def _coerce_flag(cls, v: Any) -> bool:
        return v is True


class RawEnding(_RawModel):
    type: LooseText = Field(default=None, validation_alias=AliasChoices("type", "category"))
    description: LooseText = None


class RawMeta(_RawModel):
    logline: LooseText = None
    synopsis: LooseText = None
    genre: LooseText = None
    language: LooseText = None
    target_runtime_minutes: LooseInt = Field(
        default=None,
        validation_alias=AliasChoices("targetRuntimeMinutes", "target_runtime_minutes"),
    )


class RawDocument(_RawModel):
    """The generator's candidate graph, as loosely as it arrives."""

    title: LooseText = None
    meta: Annotated[RawMeta | None, BeforeValidator(_object_or_none)] = None
    nodes: dict[str, RawNodeEntry] = Field(default_factory=dict)
    endings: dict[str, RawEnding] = Field(default_factory=dict)
    characters: dict[str, RawPerson] = Field(default_factory=dict)

    @field_validator("nodes", mode="before")
    @classmethod
    def _tag_nodes(cls, v: Any) -> dict[str, Any]:
        return {k: tag_node_entry(entry) for k, entry in _string_keyed(v).items()}

    @field_validator("endings", mode="before")
    @classmethod
    def _coerce_endings(cls, v: Any) -> dict[str, Any]:
        endings: dict[str, Any] = {}
        for key, entry in _string_keyed(v).items():
            if isinstance(entry, dict):
                endings[key] = entry
            elif isinstance(entry, str) and entry.strip():
                endings[key] = {"description": entry}
        return endings

    @field_validator("characters", mode="before")
    @classmethod
    def _coerce_characters(cls, v: Any) -> dict[str, Any]:
        if isinstance(v, list):
            keyed: dict[str, Any] = {}
            for entry in v:
                if not isinstance(entry, dict):
                    continue
                key = _first_text(entry.get("id"), entry.get("name")) or f"char_{len(keyed)}"
                keyed[key] = entry
            return keyed
        return {k: entry for k, entry in _string_keyed(v).items() if isinstance(entry, dict)}


def _first_text(*values: Any) -> str:
    for value in values:
        if isinstance(value, str) and value:
            return value
    return ""


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


def ending_type_for(raw_type: str | None, key: str = "") -> EndingType:
    """Map a loose ending category (or, failing that, its key) onto good/neutral/bad."""
    if raw_type:
        word = raw_type.strip().lower()
        if word in _ENDING_TYPE_WORDS:
            return _ENDING_TYPE_WORDS[word]
    lowered = key.lower()
    # Longest first so "unfavorable" is not read as "favorable".
    for word in sorted(_ENDING_TYPE_WORDS, key=len, reverse=True):
        if word in lowered:
            return _ENDING_TYPE_WORDS[word]
    return "neutral"


def _convert_choice(raw: RawChoice) -> Choice:
    effect = None
    raw_effect = raw.affinity_effect
    # An effect without a target or a numeric delta cannot be applied.
    if (
        raw_effect is not None
        and raw_effect.character_id is not None
        and raw_effect.delta is not None
    ):
        effect = SideEffect(character=raw_effect.character_id, delta=raw_effect.delta)
    return Choice(
        text=raw.text if raw.text is not None else DEFAULT_CHOICE_TEXT,
        target=raw.next_node_id if raw.next_node_id is not None else SENTINEL_TARGET,
        effect=effect,
    )


def _convert_node(key: str, raw: RawNodeObject | RawNodeText) -> StoryNode:
    if isinstance(raw, RawNodeText):
        return StoryNode(id=key, content=raw.content)
    return StoryNode(
        id=raw.id or raw.node_id or key,
        content=raw.content if raw.content is not None else DEFAULT_CONTENT,
        ending_key=raw.ending_key,
        level=raw.level,
        characters=raw.characters,
        choices=[_convert_choice(c) for c in raw.choices],
    )


def _convert_person(raw: RawPerson) -> Person:
    return Person(
        id=raw.id or str(uuid.uuid4()),
        name=raw.name if raw.name is not None else UNKNOWN,
        gender=raw.gender if raw.gender is not None else UNKNOWN,
        age=raw.age if raw.age is not None and raw.age >= 0 else 0,
        role=raw.role or "",
        background=raw.background or raw.description or "",
        avatar_path=raw.avatar_path,
        is_primary=raw.is_main,
    )


def decode_graph(document: Mapping[str, Any], language: str = DEFAULT_LANGUAGE) -> StoryGraph:
    """Convert the generator's raw document into a typed ``StoryGraph``.

    Args:
        document: Parsed JSON object from the content generator.
        language: Language tag used when the document's meta carries none.

    Returns:
        A typed graph. Structural defects are left for the repair pipeline.

    Raises:
        DocumentDecodeError: If ``document`` is not a mapping.
    """
    if not isinstance(document, Mapping):
        raise DocumentDecodeError(f"expected a JSON object, got {type(document).__name__}")

    raw = RawDocument.model_validate(dict(document))
    meta = raw.meta or RawMeta()

    nodes: dict[str, StoryNode] = {}
    dropped = 0
    for key, entry in raw.nodes.items():
        if isinstance(entry, RawNodeEmpty):
            dropped += 1
            continue
        nodes[key] = _convert_node(key, entry)

    graph = StoryGraph(
        title=raw.title or DEFAULT_TITLE,
        meta=StoryMeta(
            logline=meta.logline or "",
            synopsis=meta.synopsis or "",
            target_runtime_minutes=max(meta.target_runtime_minutes or 0, 0),
            genre=meta.genre or "",
            language=meta.language or language,
        ),
        nodes=nodes,
        endings={
            key: Ending(category=ending_type_for(e.type, key), description=e.description or "")
            for key, e in raw.endings.items()
        },
        characters={key: _convert_person(p) for key, p in raw.characters.items()},
    )
    log.debug(
        "document_decoded",
        nodes=len(graph.nodes),
        placeholders_dropped=dropped,
        endings=len(graph.endings),
        characters=len(graph.characters),
    )
    return graph


def strip_code_fence(text: str) -> str:
    """Remove a surrounding Markdown code fence (```json ... ```) if present."""
    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped
    body = stripped.removeprefix("```json") if stripped.startswith("```json") else stripped[3:]
    return body.removesuffix("```").strip()


def parse_generator_output(text: str) -> dict[str, Any]:
    """Parse the generator's raw text response into a JSON object.

    Raises:
        DocumentDecodeError: If the text is not JSON or not a JSON object.
    """
    try:
        data = json.loads(strip_code_fence(text))
    except json.JSONDecodeError as e:
        raise DocumentDecodeError(str(e)) from e
    if not isinstance(data, dict):
        raise DocumentDecodeError(f"expected a JSON object, got {type(data).__name__}")
    return data
