"""Preprocessing module for quality control and normalization.

Pipeline Stages
---------------
- QC: per-cell count metrics and threshold filtering
- Normalization: library-size log-normalization, variable-feature
  selection and per-gene scaling

Example Usage
-------------
>>> from sndiff.core.preprocessing import CellQC, Normalizer, PreprocessingConfig
>>> cfg = PreprocessingConfig()
>>> qc = CellQC(cfg.qc)
>>> qc_result = qc.filter_cells(counts, cell_metadata, qc.compute_qc(counts))
>>> normalizer = Normalizer(cfg.normalization)
>>> normalized = normalizer.normalize(qc_result.matrix)
"""

__version__ = "0.1.0"

# Configuration classes
from .config import (
    QCConfig,
    NormalizationConfig,
    PreprocessingConfig,
)

# Cell QC
from .qc import (
    CellQC,
    QCMetrics,
    QCResult,
    REASON_COLUMNS,
    prefix_predicate,
)

# Normalization
from .normalization import (
    FeatureSelection,
    NormalizedMatrix,
    Normalizer,
    ScaledMatrix,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "QCConfig",
    "NormalizationConfig",
    "PreprocessingConfig",
    # QC
    "CellQC",
    "QCMetrics",
    "QCResult",
    "REASON_COLUMNS",
    "prefix_predicate",
    # Normalization
    "FeatureSelection",
    "NormalizedMatrix",
    "Normalizer",
    "ScaledMatrix",
]
