"""Structural repair of the node/choice graph.

Third repair stage and the only one that reasons about global structure.
It assumes node keys and ending keys are already canonical. Three passes
run over the nodes, always visiting the entry node first and the remaining
keys in lexicographic order:

Pass A (duplicate collapse):
    Nodes with the same signature (trimmed content plus the sorted
    ``text→target`` pairs of their choices) collapse onto the first node
    seen with it. References move to the owner, a terminal marker moves
    over when the owner has none, and the duplicates are deleted. The
    entry node can own a signature but is never collapsed.

Pass B (cycle elimination):
    Three-state depth-first search. A choice that targets its own node, or
    a node still on the DFS path, is cut over to the fallback terminal key.

Pass C (reference repair and terminal consistency):
    Blank and dangling targets go to the fallback terminal key. A node
    whose terminal marker names a real ending loses its choices. A node
    left without choices or a valid marker is marked with the neutral
    ending, when one exists.

Rewriting targets in Pass C can make two nodes identical, so the passes
repeat until a round changes nothing. A round without a collapse leaves
the graph valid, so the following round is the last; the loop is bounded
by the node count.

No pass raises. With zero endings the fallback is the ``"END"`` sentinel;
the orchestrator reports that as a warning.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from branchwright.models.story import (
    ENDING_BAD,
    ENDING_GOOD,
    ENDING_NEUTRAL,
    ENTRY_NODE_KEY,
    SENTINEL_TARGET,
)
from branchwright.observability.logging import get_logger

if TYPE_CHECKING:
    from branchwright.models.story import Ending, StoryGraph, StoryNode

log = get_logger(__name__)

_UNVISITED = 0
_IN_PROGRESS = 1
_FINISHED = 2


@dataclass
class SanitizeStats:
    """Counts of repairs made by one ``sanitize_graph`` run."""

    rounds: int = 0
    duplicates_collapsed: int = 0
    cycle_edges_cut: int = 0
    targets_repaired: int = 0
    terminal_choices_cleared: int = 0
    terminal_markers_assigned: int = 0

    @property
    def total(self) -> int:
        return (
            self.duplicates_collapsed
            + self.cycle_edges_cut
            + self.targets_repaired
            + self.terminal_choices_cleared
            + self.terminal_markers_assigned
        )


def fallback_terminal_key(endings: dict[str, Ending]) -> str:
    """Pick the ending that invalid, cyclic and self-referencing choices fall back to.

    Prefers the neutral ending, then bad, then good, then the first other
    ending in sorted order. Without any ending this is the ``"END"`` sentinel.
    """
    for key in (ENDING_NEUTRAL, ENDING_BAD, ENDING_GOOD):
        if key in endings:
            return key
    if endings:
        return sorted(endings)[0]
    return SENTINEL_TARGET


def node_signature(node: StoryNode) -> str:
    """Fingerprint of a node's content and choice set, used to detect duplicates."""
    parts = sorted(f"{c.text.strip()}→{c.target.strip()}" for c in node.choices)
    return f"{node.content.strip()}||{'|'.join(parts)}"


# ---------------------------------------------------------------------------
# Pass A: duplicate collapse
# ---------------------------------------------------------------------------


def collapse_duplicates(graph: StoryGraph) -> dict[str, str]:
    """Collapse nodes sharing a signature onto the first one seen. Mutates ``graph``.

    Returns:
        Mapping of each removed node key to the key of the node it merged into.
    """
    owners: dict[str, str] = {}
    redirect: dict[str, str] = {}
    for key in graph.ordered_node_keys():
        signature = node_signature(graph.nodes[key])
        owner = owners.get(signature)
        if owner is None:
            owners[signature] = key
        elif key != ENTRY_NODE_KEY:
            redirect[key] = owner

    if not redirect:
        return redirect

    for node in graph.nodes.values():
        for choice in node.choices:
            if choice.target in redirect:
                choice.target = redirect[choice.target]

    for source in sorted(redirect):
        owner_node = graph.nodes[redirect[source]]
        marker = graph.nodes[source].ending_key
        if marker is not None and owner_node.ending_key is None:
            owner_node.ending_key = marker

    for source in redirect:
        del graph.nodes[source]

    log.debug("duplicates_collapsed", redirect=redirect)
    return redirect


# ---------------------------------------------------------------------------
# Pass B: cycle elimination
# ---------------------------------------------------------------------------


def break_cycles(graph: StoryGraph, fallback: str) -> int:
    """Cut self-loops and back edges over to ``fallback``. Mutates ``graph``.

    Uses an explicit stack of ``(node_key, next_choice_index)`` frames so
    deep graphs do not hit the interpreter's recursion limit.

    Returns:
        Number of choices rewritten.
    """
    state: dict[str, int] = {}
    cut = 0
    for root in graph.ordered_node_keys():
        if state.get(root, _UNVISITED) != _UNVISITED:
            continue
        state[root] = _IN_PROGRESS
        stack: list[tuple[str, int]] = [(root, 0)]
        while stack:
            key, index = stack[-1]
            choices = graph.nodes[key].choices
            if index >= len(choices):
                state[key] = _FINISHED
                stack.pop()
                continue
            stack[-1] = (key, index + 1)

            choice = choices[index]
            target = choice.target
            if target == key or state.get(target) == _IN_PROGRESS:
                choice.target = fallback
                cut += 1
                continue
            if target not in graph.nodes:
                continue
            if state.get(target, _UNVISITED) == _UNVISITED:
                state[target] = _IN_PROGRESS
                stack.append((target, 0))

    if cut:
        log.debug("cycle_edges_cut", count=cut, fallback=fallback)
    return cut


# ---------------------------------------------------------------------------
# Pass C: reference repair and terminal consistency
# ---------------------------------------------------------------------------


def repair_references(graph: StoryGraph, fallback: str, stats: SanitizeStats) -> int:
    """Repair dangling targets and reconcile terminal markers. Mutates ``graph``.

    Returns:
        Number of changes made in this pass.
    """
    node_keys = set(graph.nodes)
    ending_keys = set(graph.endings)
    changes = 0

    for key in graph.ordered_node_keys():
        for choice in graph.nodes[key].choices:
            target = choice.target.strip()
            if target in node_keys or target in ending_keys:
                if target != choice.target:
                    choice.target = target
                    changes += 1
                continue
            # The sentinel stays only while there is no real ending to use.
            if target == SENTINEL_TARGET and not ending_keys:
                continue
            if choice.target != fallback:
                log.debug("dangling_target_repaired", node=key, target=choice.target)
                choice.target = fallback
                stats.targets_repaired += 1
                changes += 1

    for node in graph.nodes.values():
        if node.ending_key in ending_keys and node.choices:
            node.choices = []
            stats.terminal_choices_cleared += 1
            changes += 1

    if ENDING_NEUTRAL in ending_keys:
        for node in graph.nodes.values():
            if not node.choices and node.ending_key not in ending_keys:
                node.ending_key = ENDING_NEUTRAL
                stats.terminal_markers_assigned += 1
                changes += 1

    return changes


# ---------------------------------------------------------------------------
# Stage entry point
# ---------------------------------------------------------------------------


def sanitize_graph(graph: StoryGraph) -> StoryGraph:
    """Return a structurally valid, acyclic, fully-referenced copy of ``graph``."""
    result = graph.model_copy(deep=True)
    stats = SanitizeStats()
    if not result.nodes:
        return result

    fallback = fallback_terminal_key(result.endings)
    # Only reachable when a node key doubles as the fallback key.
    max_rounds = len(result.nodes) + 2
    while True:
        if stats.rounds >= max_rounds:
            log.warning("sanitize_round_limit_reached", rounds=stats.rounds, fallback=fallback)
            break
        stats.rounds += 1
        redirect = collapse_duplicates(result)
        stats.duplicates_collapsed += len(redirect)
        cut = break_cycles(result, fallback)
        stats.cycle_edges_cut += cut
        repaired = repair_references(result, fallback, stats)
        if not redirect and not cut and not repaired:
            break

    log.debug(
        "graph_sanitized",
        rounds=stats.rounds,
        duplicates_collapsed=stats.duplicates_collapsed,
        cycle_edges_cut=stats.cycle_edges_cut,
        targets_repaired=stats.targets_repaired,
        terminal_choices_cleared=stats.terminal_choices_cleared,
        terminal_markers_assigned=stats.terminal_markers_assigned,
    )
    if fallback == SENTINEL_TARGET and any(
        c.target == SENTINEL_TARGET for n in result.nodes.values() for c in n.choices
    ):
        log.warning("sentinel_terminal_in_use", nodes=len(result.nodes))
    return result
