"""Ending key canonicalization.

Second repair stage. The generator spells the same terminal state many
ways (``GOOD``, ``good_end``, ``end_good``, ``favorable``). Every alias is
folded onto one canonical key per category:

    good    -> ending_good
    neutral -> ending_neutral
    bad     -> ending_bad

Choice targets and node terminal markers are rewritten to match. If the
canonical key is already taken, the alias entry is dropped (the entry that
registered first wins). Finally the map is capped at ``MAX_ENDINGS``.
Choices left pointing at a dropped ending are repaired by the graph
sanitizer, not here.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from branchwright.models.story import (
    CANONICAL_ENDING_KEYS,
    ENDING_BAD,
    ENDING_GOOD,
    ENDING_NEUTRAL,
    MAX_ENDINGS,
)
from branchwright.observability.logging import get_logger

if TYPE_CHECKING:
    from branchwright.models.story import Ending, StoryGraph

log = get_logger(__name__)

_CATEGORY_WORDS = {
    ENDING_GOOD: ("good", "favorable", "favourable"),
    ENDING_NEUTRAL: ("neutral",),
    ENDING_BAD: ("bad", "unfavorable", "unfavourable"),
}


def _build_aliases() -> dict[str, str]:
    aliases: dict[str, str] = {}
    for canonical, words in _CATEGORY_WORDS.items():
        for word in words:
            for pattern in ("{}", "ending_{}", "{}_end", "end_{}", "{}_ending"):
                aliases[pattern.format(word)] = canonical
    return aliases


ENDING_ALIASES = _build_aliases()


def canonical_ending_key(key: str) -> str | None:
    """Return the canonical ending key an alias stands for, or None.

    Matching ignores case and surrounding whitespace.
    """
    return ENDING_ALIASES.get(key.strip().lower())


def canonicalize_ending_map(endings: dict[str, Ending]) -> dict[str, Ending]:
    """Fold alias keys onto canonical keys.

    Keys are visited in sorted order with keys that are already canonical
    registered first, so they always win over an alias.
    """
    result: dict[str, Ending] = {}
    aliased: list[tuple[str, str]] = []
    for key in sorted(endings):
        canonical = canonical_ending_key(key)
        if canonical is None or canonical == key:
            result[key] = endings[key]
        else:
            aliased.append((key, canonical))

    for key, canonical in aliased:
        if canonical in result:
            log.debug("ending_alias_dropped", key=key, canonical=canonical)
            continue
        result[canonical] = endings[key]
    return result


def cap_endings(endings: dict[str, Ending], limit: int = MAX_ENDINGS) -> dict[str, Ending]:
    """Keep the canonical category endings plus the first others in sorted order."""
    if len(endings) <= limit:
        return endings
    kept: dict[str, Ending] = {k: endings[k] for k in CANONICAL_ENDING_KEYS if k in endings}
    for key in sorted(endings):
        if len(kept) >= limit:
            break
        kept.setdefault(key, endings[key])
    log.debug("endings_capped", dropped=sorted(set(endings) - set(kept)))
    return kept


def canonicalize_endings(graph: StoryGraph) -> StoryGraph:
    """Canonicalize ending keys and rewrite every reference to them."""
    result = graph.model_copy(deep=True)
    if result.endings:
        result.endings = canonicalize_ending_map(result.endings)

    rewritten = 0
    for key in result.ordered_node_keys():
        node = result.nodes[key]
        for choice in node.choices:
            if choice.target in result.nodes:
                continue
            canonical = canonical_ending_key(choice.target)
            if canonical is not None and canonical != choice.target:
                choice.target = canonical
                rewritten += 1
        if node.ending_key is not None:
            canonical = canonical_ending_key(node.ending_key)
            if canonical is not None and canonical != node.ending_key:
                node.ending_key = canonical
                rewritten += 1

    result.endings = cap_endings(result.endings)
    if rewritten:
        log.debug("ending_references_rewritten", count=rewritten)
    return result
