"""In-process stage execution with dependency ordering and cancellation."""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import logging
import time

from ..utils.cancel import CancelToken, check_cancelled
from .logger import PipelineLogger


@dataclass
class StageSpec:
    """A registered stage.

    Attributes
    ----------
    stage_id : str
        Stage identifier
    func : Callable
        Called as ``func(results)`` with the results of earlier stages
    depends_on : List[str]
        Stage ids that must run first
    name : str
        Human-readable stage name
    enabled : bool
        Disabled stages are skipped and produce no result
    """

    stage_id: str
    func: Callable[[Dict[str, Any]], Any]
    depends_on: List[str] = field(default_factory=list)
    name: str = ""
    enabled: bool = True


class StageExecutor:
    """Runs registered stages in dependency order.

    Each stage receives the results of all previously completed stages and
    its return value is stored under its id. The cancellation token is
    checked before every stage; failures propagate unchanged after being
    logged.

    Parameters
    ----------
    logger : PipelineLogger, optional
        Logger for stage events
    cancel_token : CancelToken, optional
        Cancellation signal

    Example
    -------
    >>> executor = StageExecutor()
    >>> executor.register_stage("qc", run_qc)
    >>> executor.register_stage("normalize", run_norm, depends_on=["qc"])
    >>> results = executor.run()
    """

    def __init__(
        self,
        logger: Optional[PipelineLogger] = None,
        cancel_token: Optional[CancelToken] = None,
    ):
        self.logger = logger
        self.cancel_token = cancel_token
        self.stages: Dict[str, StageSpec] = {}
        self.completed_stages: List[str] = []
        self.durations: Dict[str, float] = {}
        self._log = logging.getLogger(__name__)

    def register_stage(
        self,
        stage_id: str,
        func: Callable[[Dict[str, Any]], Any],
        depends_on: Optional[List[str]] = None,
        name: Optional[str] = None,
        enabled: bool = True,
    ) -> None:
        """Register a stage function."""
        if stage_id in self.stages:
            raise ValueError(f"Stage '{stage_id}' is already registered")
        self.stages[stage_id] = StageSpec(
            stage_id=stage_id,
            func=func,
            depends_on=list(depends_on or []),
            name=name or stage_id,
            enabled=enabled,
        )

    def execution_order(self) -> List[str]:
        """Topological order; ties keep registration order.

        Raises
        ------
        ValueError
            On unknown dependencies or cycles
        """
        for stage in self.stages.values():
            unknown = [d for d in stage.depends_on if d not in self.stages]
            if unknown:
                raise ValueError(
                    f"Stage '{stage.stage_id}' depends on unknown stage(s) {unknown}"
                )

        in_degree = {sid: len(stage.depends_on) for sid, stage in self.stages.items()}
        queue = deque(sid for sid, degree in in_degree.items() if degree == 0)
        order: List[str] = []
        while queue:
            stage_id = queue.popleft()
            order.append(stage_id)
            for other_id, other in self.stages.items():
                if stage_id in other.depends_on:
                    in_degree[other_id] -= 1
                    if in_degree[other_id] == 0:
                        queue.append(other_id)

        if len(order) != len(self.stages):
            raise ValueError("Circular dependency detected between stages")
        return order

    def run(self) -> Dict[str, Any]:
        """Execute all enabled stages.

        Returns
        -------
        Dict[str, Any]
            Map of stage id to stage result

        Raises
        ------
        CancelledError
            If the token is cancelled before a stage starts
        """
        order = self.execution_order()
        results: Dict[str, Any] = {}
        self._log.debug("Execution plan: %s", " -> ".join(order))

        for stage_id in order:
            stage = self.stages[stage_id]
            if not stage.enabled:
                if self.logger:
                    self.logger.log_stage_skipped(stage_id, "disabled")
                continue
            missing = [d for d in stage.depends_on if d not in results]
            if missing:
                if self.logger:
                    self.logger.log_stage_skipped(
                        stage_id, f"dependencies skipped: {', '.join(missing)}"
                    )
                continue

            check_cancelled(self.cancel_token, f"stage {stage_id}")
            if self.logger:
                self.logger.log_stage_start(stage_id, stage.name)

            start = time.time()
            try:
                results[stage_id] = stage.func(results)
            except Exception as e:
                if self.logger:
                    self.logger.log_stage_error(stage_id, e)
                raise

            self.durations[stage_id] = time.time() - start
            self.completed_stages.append(stage_id)
            if self.logger:
                self.logger.log_stage_complete(stage_id, self.durations[stage_id])

        return results
