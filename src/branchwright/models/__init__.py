"""Pydantic models for the story graph and its raw generator document.

``story`` holds the typed graph every repair stage works on, ``raw`` holds
the loose shapes accepted from the content generator and the single
conversion into the typed graph.
"""

from branchwright.models.pipeline import StageResult
from branchwright.models.raw import (
    DocumentDecodeError,
    RawDocument,
    decode_graph,
    parse_generator_output,
)
from branchwright.models.story import (
    CANONICAL_ENDING_KEYS,
    DELTA_MAX,
    DELTA_MIN,
    ENDING_BAD,
    ENDING_GOOD,
    ENDING_NEUTRAL,
    ENTRY_NODE_KEY,
    MAX_ENDINGS,
    SENTINEL_TARGET,
    CastMember,
    Choice,
    Ending,
    Person,
    SideEffect,
    StoryGraph,
    StoryMeta,
    StoryNode,
)

__all__ = [
    "CANONICAL_ENDING_KEYS",
    "DELTA_MAX",
    "DELTA_MIN",
    "ENDING_BAD",
    "ENDING_GOOD",
    "ENDING_NEUTRAL",
    "ENTRY_NODE_KEY",
    "MAX_ENDINGS",
    "SENTINEL_TARGET",
    "CastMember",
    "Choice",
    "DocumentDecodeError",
    "Ending",
    "Person",
    "RawDocument",
    "SideEffect",
    "StageResult",
    "StoryGraph",
    "StoryMeta",
    "StoryNode",
    "decode_graph",
    "parse_generator_output",
]
