"""Repair pipeline orchestrator.

Threads one ``StoryGraph`` through the five repair stages in their fixed
order, then checks the result against every invariant. Stage order
matters: each stage relies on what the previous ones established (the
sanitizer expects canonical node and ending keys, effect sanitization
expects a settled node set).

The orchestrator keeps no state between runs; concurrent calls share
nothing.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any

from branchwright.graph.cast import enforce_cast
from branchwright.graph.effects import sanitize_side_effects
from branchwright.graph.endings import canonicalize_endings
from branchwright.graph.errors import GraphCorruptionError
from branchwright.graph.keys import normalize_keys
from branchwright.graph.sanitize import sanitize_graph
from branchwright.graph.validation import ValidationReport, run_all_checks
from branchwright.models.pipeline import StageResult
from branchwright.models.raw import decode_graph
from branchwright.observability.logging import get_logger
from branchwright.pipeline.config import RepairConfig

if TYPE_CHECKING:
    from branchwright.models.story import CastMember, StoryGraph

log = get_logger(__name__)

StageFn = Callable[["StoryGraph"], "StoryGraph"]

# The cast stage needs the roster, so build_stages appends it per run.
_ROSTER_FREE_STAGES: list[tuple[str, StageFn]] = [
    ("normalize_keys", normalize_keys),
    ("canonicalize_endings", canonicalize_endings),
    ("sanitize_graph", sanitize_graph),
    ("sanitize_side_effects", sanitize_side_effects),
]
CAST_STAGE = "enforce_cast"

STAGE_ORDER = [name for name, _ in _ROSTER_FREE_STAGES] + [CAST_STAGE]


@dataclass
class PipelineResult:
    """Outcome of one repair run.

    Attributes:
        graph: The repaired graph.
        stages: One result per stage, in execution order.
        report: Post-repair invariant checks.
    """

    graph: StoryGraph
    stages: list[StageResult] = field(default_factory=list)
    report: ValidationReport = field(default_factory=ValidationReport)

    @property
    def warnings(self) -> list[str]:
        """Caller-visible warnings (e.g. the graph only ends at the sentinel)."""
        return [f"{c.name}: {c.message}" for c in self.report.warnings]

    @property
    def changed(self) -> bool:
        """True if any stage modified the graph."""
        return any(s.status == "changed" for s in self.stages)


def _describe(before: StoryGraph, after: StoryGraph) -> str:
    parts = []
    for label, old, new in (
        ("nodes", len(before.nodes), len(after.nodes)),
        ("endings", len(before.endings), len(after.endings)),
        ("characters", len(before.characters), len(after.characters)),
    ):
        parts.append(f"{label} {old}" if old == new else f"{label} {old}->{new}")
    return ", ".join(parts)


def build_stages(cast: Sequence[CastMember] | None = None) -> list[tuple[str, StageFn | None]]:
    """Return ``(name, stage_fn)`` pairs in execution order.

    The cast stage is ``None`` (skipped) when no roster is supplied.
    """
    cast_stage = partial(enforce_cast, roster=cast) if cast is not None else None
    return [*_ROSTER_FREE_STAGES, (CAST_STAGE, cast_stage)]


def repair_graph(
    graph: StoryGraph,
    *,
    cast: Sequence[CastMember] | None = None,
    strict: bool = False,
) -> PipelineResult:
    """Run the full repair pipeline over ``graph``.

    The input graph is not modified.

    Args:
        graph: Decoded graph from the content generator.
        cast: The requester's character roster, if any.
        strict: Raise instead of logging when post-repair checks fail.

    Returns:
        PipelineResult with the repaired graph, per-stage results and the
        invariant report.

    Raises:
        GraphCorruptionError: In strict mode, if an invariant still fails.
    """
    result = PipelineResult(graph=graph)
    current = graph
    for name, stage_fn in build_stages(cast):
        if stage_fn is None:
            result.stages.append(StageResult(stage=name, status="skipped", detail="no roster"))
            continue
        repaired = stage_fn(current)
        result.stages.append(
            StageResult(
                stage=name,
                status="changed" if repaired != current else "unchanged",
                detail=_describe(current, repaired),
            )
        )
        current = repaired

    result.graph = current
    result.report = run_all_checks(current)
    log.info("graph_repaired", summary=result.report.summary, changed=result.changed)

    for check in result.report.warnings:
        log.warning("repair_warning", check=check.name, message=check.message)
    if result.report.has_failures:
        violations = [f"{c.name}: {c.message}" for c in result.report.failures]
        if strict:
            raise GraphCorruptionError(violations=violations, stage=result.stages[-1].stage)
        log.error("graph_invariants_violated", violations=violations)
    return result


def repair_document(
    document: Mapping[str, Any],
    config: RepairConfig | None = None,
) -> PipelineResult:
    """Decode a raw generator document and repair it.

    Raises:
        DocumentDecodeError: If ``document`` is not a JSON object.
        GraphCorruptionError: In strict mode, if an invariant still fails.
    """
    config = config or RepairConfig()
    graph = decode_graph(document, language=config.effective_language())
    return repair_graph(graph, cast=config.cast, strict=config.strict)
