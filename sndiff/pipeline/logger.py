"""Structured logging for analysis runs."""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..io.logging import get_timestamped_log_path


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name for terminal output."""

    def __init__(self, fmt: str, datefmt: str, colors: dict):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.colors = colors

    def format(self, record):
        original = record.levelname
        color = self.colors.get(original, self.colors["RESET"])
        record.levelname = f"{color}{original}{self.colors['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class PipelineLogger:
    """Console and file logging for a pipeline run.

    Handlers are attached to the package logger ("sndiff" by default), so
    messages from every engine module are captured alongside the stage
    events.

    Parameters
    ----------
    log_dir : str or Path, optional
        Directory for the run log. Console only if None.
    log_level : str
        Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    log_name : str
        Logger name

    Attributes
    ----------
    log_file : Path or None
        Path to the run log file
    logger : logging.Logger
        Python logger instance

    Example
    -------
    >>> plog = PipelineLogger("results/logs", log_level="INFO")
    >>> plog.setup()
    >>> plog.log_stage_start("qc", "Cell quality control")
    >>> plog.log_stage_complete("qc", 3.2)
    """

    COLORS = {
        "DEBUG": "\033[0;36m",  # Cyan
        "INFO": "\033[0;34m",  # Blue
        "WARNING": "\033[1;33m",  # Yellow
        "ERROR": "\033[0;31m",  # Red
        "CRITICAL": "\033[1;31m",  # Bold Red
        "RESET": "\033[0m",
    }

    def __init__(
        self,
        log_dir: Optional[Union[str, Path]] = None,
        log_level: str = "INFO",
        log_name: str = "sndiff",
    ):
        self.log_file: Optional[Path] = None
        if log_dir is not None:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            self.log_file = get_timestamped_log_path(log_dir / "sndiff.log")

        self.log_level = getattr(logging, log_level.upper())
        self.logger = logging.getLogger(log_name)
        self.logger.setLevel(self.log_level)
        self.logger.handlers = []

    def setup(self, console: bool = True) -> logging.Logger:
        """Attach the file and console handlers.

        Returns
        -------
        logging.Logger
            The configured logger
        """
        if self.log_file is not None:
            file_handler = logging.FileHandler(self.log_file, mode="w", encoding="utf-8")
            file_handler.setLevel(self.log_level)
            file_handler.setFormatter(
                logging.Formatter(
                    fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            self.logger.addHandler(file_handler)

        if console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(self.log_level)
            console_handler.setFormatter(
                ColoredFormatter(
                    fmt="%(asctime)s - %(levelname)s - %(message)s",
                    datefmt="%H:%M:%S",
                    colors=self.COLORS,
                )
            )
            self.logger.addHandler(console_handler)
        return self.logger

    def close(self) -> None:
        """Detach and close all handlers."""
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)

    def log_stage_start(self, stage_id: str, stage_name: str) -> None:
        self.logger.info("=" * 72)
        self.logger.info("Starting stage %s: %s", stage_id, stage_name)
        self.logger.info("=" * 72)

    def log_stage_complete(self, stage_id: str, duration: float) -> None:
        self.logger.info(
            "Stage %s completed in %s", stage_id, self.format_duration(duration)
        )

    def log_stage_skipped(self, stage_id: str, reason: str) -> None:
        self.logger.info("[SKIP] Stage %s: %s", stage_id, reason)

    def log_stage_error(self, stage_id: str, error: Union[str, BaseException]) -> None:
        self.logger.error("Stage %s failed: %s", stage_id, error)

    def log_summary(self, summary: Dict[str, Any]) -> None:
        """Log a flat key/value run summary."""
        self.logger.info("Run summary:")
        for key, value in summary.items():
            self.logger.info("  %s: %s", key, value)

    @staticmethod
    def format_duration(seconds: float) -> str:
        """Format seconds as "45.2s", "1m 23s" or "2h 15m"."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        if seconds < 3600:
            return f"{int(seconds // 60)}m {int(seconds % 60)}s"
        return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"
