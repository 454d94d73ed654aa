"""Log file helpers and structured run records (JSON lines, YAML)."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Union

import yaml

PathLike = Union[str, Path]


def get_timestamped_log_path(log_path: PathLike) -> Path:
    """Insert a timestamp before the suffix: run.log -> run_20250101_120000.log."""
    log_path = Path(log_path)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return log_path.parent / f"{log_path.stem}_{timestamp}{log_path.suffix or '.log'}"


def log_json(log_path: PathLike, record: dict[str, Any]) -> None:
    """Append one JSON record (with a timestamp) to a JSON-lines file."""
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    entry = {"timestamp": datetime.now().isoformat(timespec="seconds"), **record}
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(entry, default=str))
        handle.write("\n")


def log_yaml(record: dict[str, Any], logger: logging.Logger, title: str = "") -> None:
    """Log a dictionary as a YAML block."""
    text = yaml.safe_dump(record, sort_keys=False).rstrip("\n")
    if title:
        logger.info("%s\n%s", title, text)
    else:
        logger.info("%s", text)
