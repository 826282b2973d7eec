"""Shared pipeline models.

``StageResult`` records what one repair stage did to the graph; the
orchestrator collects one per stage in execution order.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class StageResult(BaseModel):
    """Result of running one repair stage over a graph.

    ``status`` is ``"changed"`` when the stage produced a graph that differs
    from its input, ``"unchanged"`` when it was a no-op, and ``"skipped"``
    when the stage had nothing to act on (e.g. no cast allow-list).
    """

    stage: str = Field(min_length=1)
    status: Literal["changed", "unchanged", "skipped"]
    detail: str = ""
