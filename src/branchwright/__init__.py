"""Branchwright: deterministic repair of machine-generated branching stories."""

__version__ = "0.1.0"
