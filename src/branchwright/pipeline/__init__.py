"""Pipeline orchestration for the repair stages."""

from branchwright.pipeline.config import (
    RepairConfig,
    RepairConfigError,
    load_cast_file,
    load_repair_config,
)
from branchwright.pipeline.orchestrator import (
    STAGE_ORDER,
    PipelineResult,
    build_stages,
    repair_document,
    repair_graph,
)

__all__ = [
    "STAGE_ORDER",
    "PipelineResult",
    "RepairConfig",
    "RepairConfigError",
    "build_stages",
    "load_cast_file",
    "load_repair_config",
    "repair_document",
    "repair_graph",
]
