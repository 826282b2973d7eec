"""Key normalization for the cast and node maps.

First repair stage. Gives every person and every node a stable key that
does not depend on the identifier convention the generator happened to use:

- people are keyed by display name, and ``Person.id`` mirrors the key
- the entry node is always ``"start"``; legacy ``n_``/``node_`` prefixes
  are stripped from every other node key
- choice targets follow their node to its new key, and ``StoryNode.id``
  mirrors the node's key

Two people that end up with the same name collapse onto one entry; the
last one in sorted key order wins. This merge is lossy and accepted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from branchwright.models.story import ENTRY_NODE_KEY
from branchwright.observability.logging import get_logger

if TYPE_CHECKING:
    from branchwright.models.story import Person, StoryGraph, StoryNode

log = get_logger(__name__)

LEGACY_NODE_PREFIXES = ("n_", "node_")
ENTRY_KEY_ALIASES = frozenset({ENTRY_NODE_KEY, "n_start", "node_start"})


def canonical_node_key(key: str) -> str:
    """Return the canonical spelling of a node key.

    Entry-node aliases fold onto ``"start"``. Otherwise legacy prefixes are
    stripped until none is left, never leaving an empty key.
    """
    key = key.strip()
    while key not in ENTRY_KEY_ALIASES:
        for prefix in LEGACY_NODE_PREFIXES:
            if key.startswith(prefix) and len(key) > len(prefix):
                key = key[len(prefix) :]
                break
        else:
            return key
    return ENTRY_NODE_KEY


def _person_key(old_key: str, person: Person) -> str:
    return person.name.strip() or person.id.strip() or old_key


def _rename_people(graph: StoryGraph, renamed: dict[str, str]) -> None:
    """Point node person lists and effect targets at the re-keyed cast. Mutates ``graph``."""
    for node in graph.nodes.values():
        if node.characters is not None:
            node.characters = [renamed.get(n.strip(), n) for n in node.characters]
        for choice in node.choices:
            if choice.effect is not None:
                target = choice.effect.character.strip()
                choice.effect.character = renamed.get(target, choice.effect.character)


def normalize_cast_keys(graph: StoryGraph) -> StoryGraph:
    """Re-key the cast by display name and mirror the key into ``Person.id``.

    Node person lists and side effects that referred to a person by an old
    id or map key are rewritten to the new key.
    """
    result = graph.model_copy(deep=True)
    characters: dict[str, Person] = {}
    renamed: dict[str, str] = {}
    for old_key in sorted(result.characters):
        person = result.characters[old_key]
        key = _person_key(old_key, person)
        if key in characters:
            log.debug("cast_key_collision", key=key, replaced_by=old_key)
        for old in (old_key, person.id.strip()):
            if old and old != key:
                renamed[old] = key
        person.id = key
        characters[key] = person
    result.characters = characters
    # A current display name is never re-pointed at someone else.
    for key in characters:
        renamed.pop(key, None)
    if renamed:
        _rename_people(result, renamed)
    return result


def plan_node_keys(keys: list[str]) -> dict[str, str]:
    """Assign a collision-free canonical key to every node key.

    Keys are processed in lexicographic order and the first to reach a
    canonical name claims it; later collisions get ``_2``, ``_3``, ...
    suffixes. ``"n_z"`` sorts before ``"z"``, so it takes ``"z"``.

    Returns:
        Mapping of every old key to its new key.
    """
    used: set[str] = set()
    plan: dict[str, str] = {}
    for old_key in sorted(keys):
        base = canonical_node_key(old_key)
        final = base
        suffix = 2
        while final in used:
            final = f"{base}_{suffix}"
            suffix += 1
        used.add(final)
        plan[old_key] = final
    return plan


def _resolve_target(
    target: str,
    plan: dict[str, str],
    new_keys: set[str],
    ending_keys: set[str],
) -> str:
    target = target.strip()
    if target in plan:
        return plan[target]
    if target in ending_keys:
        return target
    # A legacy spelling of a node that never existed under that spelling.
    canonical = canonical_node_key(target)
    if canonical != target and canonical in new_keys:
        return canonical
    return target


def normalize_node_keys(graph: StoryGraph) -> StoryGraph:
    """Canonicalize node keys and rewrite every choice target that used an old key."""
    result = graph.model_copy(deep=True)
    plan = plan_node_keys(list(result.nodes))
    new_keys = set(plan.values())
    ending_keys = set(result.endings)

    nodes: dict[str, StoryNode] = {}
    for old_key in sorted(result.nodes, key=lambda k: plan[k]):
        node = result.nodes[old_key]
        new_key = plan[old_key]
        node.id = new_key
        for choice in node.choices:
            choice.target = _resolve_target(choice.target, plan, new_keys, ending_keys)
        nodes[new_key] = node
    result.nodes = nodes

    renamed = sum(1 for old, new in plan.items() if old != new)
    if renamed:
        log.debug("nodes_rekeyed", count=renamed)
    return result


def normalize_keys(graph: StoryGraph) -> StoryGraph:
    """Run cast and node key normalization."""
    return normalize_node_keys(normalize_cast_keys(graph))
