"""Structured logging for eigenvalue analyses: rotating app log plus JSONL solve records."""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

import numpy as np

from structural_stability.core.config import AppConfig


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    return str(value)


class StructuredLogger:
    def __init__(self, log_dir: str = "data/logs", level: str = "INFO"):
        self._log_dir = log_dir
        self._level = getattr(logging, str(level).upper(), logging.INFO)
        os.makedirs(log_dir, exist_ok=True)
        self._setup_app_logger()

    @classmethod
    def from_config(cls, config: Optional[AppConfig] = None) -> "StructuredLogger":
        """Build a logger from the ``logging`` section of an :class:`AppConfig`."""
        config = config or AppConfig()
        return cls(
            log_dir=config.get("logging.dir", "data/logs"),
            level=config.get("logging.level", "INFO"),
        )

    def _setup_app_logger(self) -> None:
        self._app_logger = logging.getLogger("structural_stability." + str(id(self)))
        if not self._app_logger.handlers:
            handler = RotatingFileHandler(
                os.path.join(self._log_dir, "app.log"),
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
            )
            handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
            )
            self._app_logger.addHandler(handler)
            self._app_logger.setLevel(self._level)

    @property
    def app(self) -> logging.Logger:
        return self._app_logger

    @property
    def log_dir(self) -> str:
        return self._log_dir

    def _write_jsonl(self, filename: str, record: dict) -> None:
        filepath = os.path.join(self._log_dir, filename)
        with open(filepath, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=_to_jsonable) + "\n")

    def log_solve(
        self,
        problem: str,
        strategy: str,
        inputs: dict,
        outputs: dict,
        metadata: Optional[dict] = None,
    ) -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": "eigen.solved",
            "problem": problem,
            "strategy": strategy,
            "inputs": inputs,
            "outputs": outputs,
            "metadata": metadata or {},
        }
        self._write_jsonl("solves.jsonl", record)
        self._app_logger.info("%s solve (%s) recorded", problem, strategy)

    def log_failure(self, problem: str, strategy: str, error: BaseException) -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": "eigen.failed",
            "problem": problem,
            "strategy": strategy,
            "error_type": type(error).__name__,
            "message": str(error),
        }
        self._write_jsonl("solves.jsonl", record)
        self._app_logger.error("%s solve (%s) failed: %s", problem, strategy, error)
