"""Pipeline orchestration module.

Provides the master run configuration, in-process stage execution with
dependency ordering and cancellation, and structured run logging.

Example Usage
-------------
>>> from sndiff.pipeline import AnalysisConfig, AnalysisPipeline, PipelineLogger
>>> config = AnalysisConfig.from_yaml("analysis.yaml")
>>> plog = PipelineLogger("results/logs")
>>> plog.setup()
>>> run = AnalysisPipeline(config, logger=plog).run(counts, cell_metadata)
>>> run.write("results")
"""

__version__ = "0.1.0"

# Configuration
from .config import AnalysisConfig, OutputConfig

# Logging
from .logger import ColoredFormatter, PipelineLogger

# Execution
from .executor import StageExecutor, StageSpec
from .runner import AnalysisPipeline, AnalysisRun

__all__ = [
    # Version
    "__version__",
    # Config
    "AnalysisConfig",
    "OutputConfig",
    # Logging
    "ColoredFormatter",
    "PipelineLogger",
    # Execution
    "StageExecutor",
    "StageSpec",
    "AnalysisPipeline",
    "AnalysisRun",
]
