"""Side-effect sanitization and protagonist selection.

Fourth repair stage. A choice may carry a relationship delta aimed at one
person. After this stage every surviving effect:

- names its target by display name (ids are resolved through the cast)
- has a delta inside ``[DELTA_MIN, DELTA_MAX]``
- targets a person listed on the choice's node
- never targets the protagonist

Effects that cannot be made valid are removed, never zeroed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from branchwright.models.story import DELTA_MAX, DELTA_MIN
from branchwright.observability.logging import get_logger

if TYPE_CHECKING:
    from branchwright.models.story import Person, StoryGraph, StoryNode

log = get_logger(__name__)

# Heuristic weights for protagonist scoring.
KEY_TOKEN_WEIGHT = 5
ROLE_TOKEN_WEIGHT = 6
SELF_NAME_WEIGHT = 7
NAME_TOKEN_WEIGHT = 4

PROTAGONIST_TOKENS = ("player", "protagonist", "main")
NAME_TOKENS = ("protagonist", "player")
SELF_REFERENCE_NAMES = frozenset({"我", "i", "me", "myself"})
PROTAGONIST_MARKERS = ("主角",)


def protagonist_score(key: str, person: Person) -> int:
    """Score how likely a cast entry is to be the player character."""
    name = person.name.strip()
    key_l = key.lower()
    role_l = person.role.lower()
    name_l = name.lower()

    score = 0
    if any(token in key_l for token in PROTAGONIST_TOKENS):
        score += KEY_TOKEN_WEIGHT
    if any(token in role_l for token in PROTAGONIST_TOKENS):
        score += ROLE_TOKEN_WEIGHT
    if name_l in SELF_REFERENCE_NAMES or any(marker in name for marker in PROTAGONIST_MARKERS):
        score += SELF_NAME_WEIGHT
    if any(token in name_l for token in NAME_TOKENS):
        score += NAME_TOKEN_WEIGHT
    return score


def pick_protagonist(characters: dict[str, Person]) -> str | None:
    """Return the protagonist's display name, or None for a cast without names.

    A person flagged ``is_primary`` wins outright. Otherwise the highest
    heuristic score wins, ties going to the first key in sorted order, so a
    cast with no signals at all still has a protagonist.
    """
    keys = sorted(characters)
    for key in keys:
        person = characters[key]
        if person.is_primary and person.name.strip():
            return person.name.strip()

    best: tuple[int, str] | None = None
    for key in keys:
        person = characters[key]
        name = person.name.strip()
        if not name:
            continue
        score = protagonist_score(key, person)
        if best is None or score > best[0]:
            best = (score, name)
    return best[1] if best else None


def build_id_to_name(characters: dict[str, Person]) -> dict[str, str]:
    """Map every cast id to its display name, skipping blank entries."""
    mapping: dict[str, str] = {}
    for person in characters.values():
        person_id = person.id.strip()
        name = person.name.strip()
        if person_id and name:
            mapping[person_id] = name
    return mapping


def _allowed_names(node: StoryNode, id_to_name: dict[str, str]) -> set[str]:
    allowed: set[str] = set()
    for raw in node.characters or []:
        value = raw.strip()
        if value:
            allowed.add(id_to_name.get(value, value))
    return allowed


def sanitize_side_effects(graph: StoryGraph) -> StoryGraph:
    """Clamp, resolve and drop choice side effects so they are referentially safe."""
    result = graph.model_copy(deep=True)
    id_to_name = build_id_to_name(result.characters)
    protagonist = pick_protagonist(result.characters)

    clamped = 0
    dropped = 0
    for key in result.ordered_node_keys():
        node = result.nodes[key]
        allowed = _allowed_names(node, id_to_name)
        for choice in node.choices:
            effect = choice.effect
            if effect is None:
                continue

            delta = min(max(effect.delta, DELTA_MIN), DELTA_MAX)
            if delta != effect.delta:
                effect.delta = delta
                clamped += 1

            raw = effect.character.strip()
            resolved = id_to_name.get(raw, raw)
            if not resolved or resolved == protagonist or resolved not in allowed:
                choice.effect = None
                dropped += 1
                continue
            effect.character = resolved

    log.debug(
        "side_effects_sanitized",
        protagonist=protagonist,
        clamped=clamped,
        dropped=dropped,
    )
    return result
