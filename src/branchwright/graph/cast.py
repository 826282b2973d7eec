"""Cast consistency against the requester's own roster.

Last repair stage. When the caller supplies its character roster, the
generator's cast is discarded and rebuilt from that roster, and every
node's person list is filtered down to roster names. Because this runs
after side-effect sanitization, effects whose target is no longer present
on the node (or is now the protagonist) are removed here as well.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from branchwright.graph.effects import pick_protagonist
from branchwright.models.story import Person
from branchwright.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from branchwright.models.story import CastMember, StoryGraph

log = get_logger(__name__)


def build_cast(roster: Sequence[CastMember]) -> dict[str, Person]:
    """Build the cast map from the roster, keyed by trimmed name; blanks are skipped."""
    cast: dict[str, Person] = {}
    for member in roster:
        name = member.name.strip()
        if not name:
            continue
        cast[name] = Person(
            id=name,
            name=name,
            gender=member.gender,
            age=0,
            role=member.description,
            background="",
            avatar_path=None,
            is_primary=member.is_main,
        )
    return cast


def filter_people(names: list[str] | None, allowed: set[str]) -> list[str] | None:
    """Keep allowed, non-blank, first-occurrence names; None when nothing is left."""
    if names is None:
        return None
    kept: list[str] = []
    for raw in names:
        name = raw.strip()
        if name and name in allowed and name not in kept:
            kept.append(name)
    return kept or None


def enforce_cast(graph: StoryGraph, roster: Sequence[CastMember] | None) -> StoryGraph:
    """Restrict the graph's cast and per-node person lists to ``roster``.

    Args:
        graph: Graph to restrict.
        roster: The requester's characters. ``None`` returns an unchanged
            copy; an empty roster empties the cast.

    Returns:
        The restricted graph.
    """
    result = graph.model_copy(deep=True)
    if roster is None:
        return result

    result.characters = build_cast(roster)
    allowed = set(result.characters)
    protagonist = pick_protagonist(result.characters)

    removed_people = 0
    dropped_effects = 0
    for key in result.ordered_node_keys():
        node = result.nodes[key]
        before = len(node.characters or [])
        node.characters = filter_people(node.characters, allowed)
        present = set(node.characters or [])
        removed_people += before - len(present)

        for choice in node.choices:
            effect = choice.effect
            if effect is None:
                continue
            if effect.character not in present or effect.character == protagonist:
                choice.effect = None
                dropped_effects += 1

    log.debug(
        "cast_enforced",
        cast=len(result.characters),
        people_removed=removed_people,
        effects_dropped=dropped_effects,
    )
    return result
