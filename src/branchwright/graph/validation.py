"""Invariant checks for a repaired story graph.

Pure, read-only functions that verify what the repair pipeline promises.
The pipeline runs them after its last stage; tests run them on adversarial
inputs. Each check returns one ``ValidationCheck``:

- ``fail``: an invariant is broken, which means a repair stage has a bug
- ``warn``: the graph is valid but degraded (sentinel-only endings,
  missing entry node)
- ``pass``: the invariant holds
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from branchwright.graph.effects import build_id_to_name, pick_protagonist
from branchwright.graph.sanitize import node_signature
from branchwright.models.story import (
    DELTA_MAX,
    DELTA_MIN,
    ENDING_NEUTRAL,
    ENTRY_NODE_KEY,
    MAX_ENDINGS,
    SENTINEL_TARGET,
)

if TYPE_CHECKING:
    from branchwright.models.story import StoryGraph

# How many offending items to name in a message.
_SHOWN = 5


@dataclass
class ValidationCheck:
    """Result of a single validation check.

    Attributes:
        name: Identifier for the check.
        severity: "pass", "warn", or "fail".
        message: Human-readable description of the result.
    """

    name: str
    severity: Literal["pass", "warn", "fail"]
    message: str = ""


@dataclass
class ValidationReport:
    """Aggregated results of validation checks."""

    checks: list[ValidationCheck] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        """True if any check has severity 'fail'."""
        return any(c.severity == "fail" for c in self.checks)

    @property
    def has_warnings(self) -> bool:
        """True if any check has severity 'warn'."""
        return any(c.severity == "warn" for c in self.checks)

    @property
    def failures(self) -> list[ValidationCheck]:
        return [c for c in self.checks if c.severity == "fail"]

    @property
    def warnings(self) -> list[ValidationCheck]:
        return [c for c in self.checks if c.severity == "warn"]

    @property
    def summary(self) -> str:
        """Human-readable summary of all checks."""
        passes = [c for c in self.checks if c.severity == "pass"]

        parts: list[str] = []
        if self.failures:
            parts.append(f"{len(self.failures)} failed")
        if self.warnings:
            parts.append(f"{len(self.warnings)} warnings")
        if passes:
            parts.append(f"{len(passes)} passed")
        return ", ".join(parts)


def _listing(items: list[str]) -> str:
    shown = ", ".join(items[:_SHOWN])
    if len(items) > _SHOWN:
        shown += f", ... and {len(items) - _SHOWN} more"
    return shown


def check_node_ids(graph: StoryGraph) -> ValidationCheck:
    """Every node's ``id`` equals its key."""
    bad = sorted(k for k, n in graph.nodes.items() if n.id != k)
    if bad:
        return ValidationCheck("node_ids", "fail", f"id differs from key: {_listing(bad)}")
    return ValidationCheck("node_ids", "pass")


def check_entry_node(graph: StoryGraph) -> ValidationCheck:
    """A non-empty graph has a ``start`` node."""
    if graph.nodes and ENTRY_NODE_KEY not in graph.nodes:
        return ValidationCheck("entry_node", "warn", f"no '{ENTRY_NODE_KEY}' node")
    return ValidationCheck("entry_node", "pass")


def check_no_self_loops(graph: StoryGraph) -> ValidationCheck:
    """No choice targets its own node."""
    loops = sorted(k for k, n in graph.nodes.items() if any(c.target == k for c in n.choices))
    if loops:
        return ValidationCheck("self_loops", "fail", f"self-referencing nodes: {_listing(loops)}")
    return ValidationCheck("self_loops", "pass")


def find_cycle_nodes(graph: StoryGraph) -> list[str]:
    """Return the nodes that sit on or behind a cycle (Kahn's algorithm leftovers)."""
    in_degree: dict[str, int] = dict.fromkeys(graph.nodes, 0)
    successors: dict[str, list[str]] = defaultdict(list)
    for key, node in graph.nodes.items():
        for choice in node.choices:
            if choice.target in graph.nodes:
                successors[key].append(choice.target)
                in_degree[choice.target] += 1

    queue = sorted(k for k, d in in_degree.items() if d == 0)
    visited = 0
    while queue:
        key = queue.pop()
        visited += 1
        for succ in successors[key]:
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                queue.append(succ)

    if visited == len(graph.nodes):
        return []
    return sorted(k for k, d in in_degree.items() if d > 0)


def check_acyclic(graph: StoryGraph) -> ValidationCheck:
    """The node/choice graph has no directed cycle."""
    remaining = find_cycle_nodes(graph)
    if remaining:
        return ValidationCheck("acyclic", "fail", f"cycle among: {_listing(remaining)}")
    return ValidationCheck("acyclic", "pass")


def check_references(graph: StoryGraph) -> ValidationCheck:
    """Every choice target is a node, an ending, or the sentinel when no ending exists."""
    dangling: list[str] = []
    sentinel_used = False
    for key in sorted(graph.nodes):
        for choice in graph.nodes[key].choices:
            target = choice.target
            if target in graph.nodes or target in graph.endings:
                continue
            if target == SENTINEL_TARGET and not graph.endings:
                sentinel_used = True
                continue
            dangling.append(f"{key}->{target or '<blank>'}")

    if dangling:
        return ValidationCheck("references", "fail", f"dangling targets: {_listing(dangling)}")
    if sentinel_used:
        return ValidationCheck(
            "sentinel_terminal",
            "warn",
            f"no endings defined; choices end at the '{SENTINEL_TARGET}' sentinel",
        )
    return ValidationCheck("references", "pass")


def check_unique_signatures(graph: StoryGraph) -> ValidationCheck:
    """No two nodes share content and choice set."""
    seen: dict[str, str] = {}
    duplicates: list[str] = []
    for key in graph.ordered_node_keys():
        signature = node_signature(graph.nodes[key])
        if signature in seen:
            duplicates.append(f"{key}={seen[signature]}")
        else:
            seen[signature] = key
    if duplicates:
        return ValidationCheck("unique_nodes", "fail", f"duplicate nodes: {_listing(duplicates)}")
    return ValidationCheck("unique_nodes", "pass")


def check_ending_cap(graph: StoryGraph) -> ValidationCheck:
    """At most ``MAX_ENDINGS`` endings."""
    if len(graph.endings) > MAX_ENDINGS:
        return ValidationCheck(
            "ending_cap", "fail", f"{len(graph.endings)} endings (max {MAX_ENDINGS})"
        )
    return ValidationCheck("ending_cap", "pass")


def check_terminal_consistency(graph: StoryGraph) -> ValidationCheck:
    """A node has no choices exactly when it carries a valid terminal marker.

    An unmarked dead end is tolerated only when there is no neutral ending
    to mark it with.
    """
    branching_terminals: list[str] = []
    unmarked: list[str] = []
    for key in sorted(graph.nodes):
        node = graph.nodes[key]
        marked = node.ending_key in graph.endings
        if marked and node.choices:
            branching_terminals.append(key)
        elif not marked and not node.choices and ENDING_NEUTRAL in graph.endings:
            unmarked.append(key)

    problems: list[str] = []
    if branching_terminals:
        problems.append(f"terminal nodes with choices: {_listing(branching_terminals)}")
    if unmarked:
        problems.append(f"dead ends without ending: {_listing(unmarked)}")
    if problems:
        return ValidationCheck("terminal_consistency", "fail", "; ".join(problems))
    return ValidationCheck("terminal_consistency", "pass")


def check_side_effects(graph: StoryGraph) -> ValidationCheck:
    """Effects are in range, target a person on the node, and spare the protagonist."""
    protagonist = pick_protagonist(graph.characters)
    id_to_name = build_id_to_name(graph.characters)
    bad: list[str] = []
    for key in sorted(graph.nodes):
        node = graph.nodes[key]
        present = {id_to_name.get(n.strip(), n.strip()) for n in node.characters or []}
        for choice in node.choices:
            effect = choice.effect
            if effect is None:
                continue
            if not DELTA_MIN <= effect.delta <= DELTA_MAX:
                bad.append(f"{key}: delta {effect.delta}")
            elif protagonist is not None and effect.character == protagonist:
                bad.append(f"{key}: targets protagonist {effect.character}")
            elif effect.character not in present:
                bad.append(f"{key}: {effect.character} not on node")
    if bad:
        return ValidationCheck("side_effects", "fail", _listing(bad))
    return ValidationCheck("side_effects", "pass")


def run_all_checks(graph: StoryGraph) -> ValidationReport:
    """Run every invariant check over ``graph``."""
    return ValidationReport(
        checks=[
            check_node_ids(graph),
            check_entry_node(graph),
            check_no_self_loops(graph),
            check_acyclic(graph),
            check_references(graph),
            check_unique_signatures(graph),
            check_ending_cap(graph),
            check_terminal_consistency(graph),
            check_side_effects(graph),
        ]
    )
