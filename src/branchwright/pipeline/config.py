"""Repair configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML

from branchwright.models.raw import DEFAULT_LANGUAGE
from branchwright.models.story import CastMember

LANGUAGE_ENV_VAR = "BW_LANGUAGE"


@dataclass
class RepairConfig:
    """Configuration for one repair run.

    Attributes:
        language: Language tag for graphs whose meta carries none.
        strict: Raise ``GraphCorruptionError`` when post-repair checks fail.
        cast: The requester's character roster; ``None`` skips cast enforcement.
    """

    language: str = DEFAULT_LANGUAGE
    strict: bool = False
    cast: list[CastMember] | None = None

    def effective_language(self) -> str:
        """Language tag, with ``BW_LANGUAGE`` taking precedence over config."""
        return os.getenv(LANGUAGE_ENV_VAR) or self.language

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RepairConfig:
        """Create config from dictionary.

        Args:
            data: Dictionary with optional ``language``, ``strict`` and
                ``cast`` (list of ``name``/``description``/``gender``/``isMain``).

        Returns:
            RepairConfig instance.

        Raises:
            ValueError: If a cast entry is malformed.
        """
        cast_data = data.get("cast")
        cast = parse_cast(cast_data) if cast_data is not None else None
        return cls(
            language=str(data.get("language") or DEFAULT_LANGUAGE),
            strict=bool(data.get("strict", False)),
            cast=cast,
        )


def parse_cast(data: Any) -> list[CastMember]:
    """Validate a roster given as a list of mappings.

    Raises:
        ValueError: If ``data`` is not a list of valid entries.
    """
    if not isinstance(data, list):
        raise ValueError("cast must be a list of characters")
    try:
        return [CastMember.model_validate(dict(entry)) for entry in data]
    except (TypeError, ValueError) as e:
        raise ValueError(f"invalid cast entry: {e}") from e


class RepairConfigError(Exception):
    """Raised when a configuration or roster file cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load config at {path}: {reason}")


def _load_yaml(path: Path) -> Any:
    if not path.exists():
        raise RepairConfigError(path, "File not found")
    yaml = YAML(typ="safe")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)
    except Exception as e:
        raise RepairConfigError(path, str(e)) from e
    if data is None:
        raise RepairConfigError(path, "Empty file")
    return data


def load_repair_config(path: Path) -> RepairConfig:
    """Load repair configuration from a YAML file.

    Raises:
        RepairConfigError: If the file is missing, empty or invalid.
    """
    data = _load_yaml(path)
    if not isinstance(data, dict):
        raise RepairConfigError(path, "Expected a mapping at top level")
    try:
        return RepairConfig.from_dict(data)
    except ValueError as e:
        raise RepairConfigError(path, str(e)) from e


def load_cast_file(path: Path) -> list[CastMember]:
    """Load a roster from a YAML or JSON file holding a list of characters.

    A mapping with a top-level ``cast`` or ``characters`` list is accepted too.

    Raises:
        RepairConfigError: If the file is missing or not a valid roster.
    """
    data = _load_yaml(path)
    if isinstance(data, dict):
        data = data.get("cast", data.get("characters"))
    try:
        return parse_cast(data)
    except ValueError as e:
        raise RepairConfigError(path, str(e)) from e

