"""Graph package - the five repair stages and the invariant checks.

Stages, in the order the pipeline runs them:

1. ``keys``: canonical cast and node keys
2. ``endings``: canonical ending keys, at most five endings
3. ``sanitize``: duplicate collapse, cycle breaking, reference repair
4. ``effects``: side-effect clamping and target validation
5. ``cast``: restriction to the requester's character roster

Every stage is a function ``StoryGraph -> StoryGraph`` that returns a new
graph and leaves its argument untouched.
"""

from branchwright.graph.cast import enforce_cast
from branchwright.graph.effects import pick_protagonist, sanitize_side_effects
from branchwright.graph.endings import canonical_ending_key, canonicalize_endings
from branchwright.graph.errors import GraphCorruptionError
from branchwright.graph.keys import canonical_node_key, normalize_keys
from branchwright.graph.sanitize import fallback_terminal_key, node_signature, sanitize_graph
from branchwright.graph.validation import ValidationCheck, ValidationReport, run_all_checks

__all__ = [
    "GraphCorruptionError",
    "ValidationCheck",
    "ValidationReport",
    "canonical_ending_key",
    "canonical_node_key",
    "canonicalize_endings",
    "enforce_cast",
    "fallback_terminal_key",
    "node_signature",
    "normalize_keys",
    "pick_protagonist",
    "run_all_checks",
    "sanitize_graph",
    "sanitize_side_effects",
]
