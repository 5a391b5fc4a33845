"""
Configuration
=============
Option lookup for the drivers.

Options are addressed by dotted names such as ``weight.smooth.value`` or
``lbfgs.maxits.value``. The backing mapping may be nested
(``{"weight": {"smooth": {"value": 1.0}}}``), flat
(``{"weight.smooth.value": 1.0}``) or a mix of both.

Exports:
    OptionTree: Typed, dotted-path view over a mapping.
    MISSING: Sentinel meaning "no default, the option is required".
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping, TypeVar

from geomopt.errors import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


class OptionTree:
    """
    Read-only dotted-path access to a configuration mapping.
    """

    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        """
        Initialize the option tree.

        Args:
            data: Nested and/or flat mapping of options.
        """
        self._data: dict[str, Any] = dict(data or {})

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._data!r})"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> OptionTree:
        return cls(data)

    @classmethod
    def from_file(cls, path: str | Path) -> OptionTree:
        """
        Load options from a JSON file.

        Raises:
            ConfigurationError: If the file cannot be read or parsed.
        """
        logger.info(f"Loading configuration from: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read configuration '{path}': {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration root in '{path}' must be an object.")
        return cls(data)

    def _lookup(self, path: str) -> Any:
        if path in self._data:
            return self._data[path]

        node: Any = self._data
        for key in path.split("."):
            if not isinstance(node, Mapping) or key not in node:
                return MISSING
            node = node[key]
        return node

    def __contains__(self, path: str) -> bool:
        return self._lookup(path) is not MISSING

    def get(self, path: str, kind: type[T] = float, default: Any = MISSING) -> T:
        """
        Get a typed option.

        Args:
            path: Dotted option name.
            kind: Target type (``float``, ``int``, ``str``, ``bool``).
            default: Returned when the option is absent. Without a default
                the option is required.

        Raises:
            ConfigurationError: If a required option is absent or the value
                cannot be converted to ``kind``.

        Returns:
            The converted option value.
        """
        raw = self._lookup(path)
        if raw is MISSING:
            if default is MISSING:
                raise ConfigurationError(f"Missing required option '{path}'.")
            return default

        if isinstance(raw, Mapping):
            raise ConfigurationError(f"Option '{path}' is a group, not a value.")

        # int("1.5") and int(1.5) both need a guard
        if kind is int and isinstance(raw, float) and not raw.is_integer():
            raise ConfigurationError(f"Option '{path}' must be an integer, got {raw!r}.")
        if kind is bool and isinstance(raw, str):
            return raw.strip().lower() in ("1", "true", "yes", "on")  # type: ignore[return-value]
        try:
            return kind(raw)  # type: ignore[call-arg]
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Option '{path}' cannot be read as {kind.__name__}: {raw!r}"
            ) from e

    def get_float(self, path: str, default: Any = MISSING) -> float:
        return self.get(path, float, default)

    def get_int(self, path: str, default: Any = MISSING) -> int:
        return self.get(path, int, default)

    def get_str(self, path: str, default: Any = MISSING) -> str:
        return self.get(path, str, default)
