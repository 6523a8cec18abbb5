"""YAML configuration for eigen solves and structured logging.

A file only needs the keys it changes; everything else falls back to
:data:`DEFAULT_CONFIG`::

    eigen:
      solver: 2          # SpectraMode.SHIFT_INVERT
      ncv_fac: 4
    logging:
      dir: results/logs
"""
from __future__ import annotations

import copy
import os
from typing import Any, Optional

import yaml

DEFAULT_CONFIG = {
    "eigen": {
        "verbose": False,
        "solver": 0,
        "selection_rule": 4,
        "sort_rule": 4,
        "ncv_fac": 3,
        "factorization": "lu",
    },
    "logging": {"dir": "data/logs", "level": "INFO"},
}


def _merge_into(base: dict, override: dict) -> None:
    for key, value in override.items():
        if isinstance(base.get(key), dict) and isinstance(value, dict):
            _merge_into(base[key], value)
        else:
            base[key] = value


class AppConfig:
    """Read-only view of the defaults overlaid with an optional YAML file."""

    def __init__(self, config_path: Optional[str] = None):
        self._data = copy.deepcopy(DEFAULT_CONFIG)
        if config_path and os.path.exists(config_path):
            with open(config_path, "r", encoding="utf-8") as f:
                overrides = yaml.safe_load(f) or {}
            if not isinstance(overrides, dict):
                raise ValueError(
                    f"Configuration file {config_path!r} must contain a mapping, "
                    f"got {type(overrides).__name__}"
                )
            _merge_into(self._data, overrides)

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """Look up ``"section.key"``; a copy is returned for mapping values."""
        node: Any = self._data
        for key in dotted_key.split("."):
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return copy.deepcopy(node) if isinstance(node, dict) else node
