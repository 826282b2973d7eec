"""Error types for the repair pipeline.

Malformed generator output is never an error: every structural defect is
repaired in place. The one exception type here signals a bug in the
repair stages themselves.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class GraphCorruptionError(Exception):
    """Raised when post-repair invariant checks still find violations.

    Unlike a malformed input, this indicates a code bug: some stage failed
    to establish an invariant it promises. Only raised in strict mode.

    Attributes:
        violations: List of invariant violations found.
        stage: Stage after which corruption was detected.
    """

    violations: list[str]
    stage: str = ""

    def __post_init__(self) -> None:
        msg = f"Graph corruption detected after {self.stage or 'unknown'} stage"
        if self.violations:
            msg += f": {len(self.violations)} violation(s)"
        super().__init__(msg)

    def __str__(self) -> str:
        lines = [f"Graph corruption detected after {self.stage or 'unknown'} stage:"]
        for v in self.violations[:5]:
            lines.append(f"  - {v}")
        if len(self.violations) > 5:
            lines.append(f"  - ... and {len(self.violations) - 5} more")
        return "\n".join(lines)
