"""Configuration classes for preprocessing stages.

All preprocessing parameters are explicit and configurable via YAML.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


@dataclass
class QCConfig:
    """Configuration for cell QC.

    Attributes
    ----------
    min_features : int
        Minimum number of detected genes for a retained cell
    max_features : int
        Maximum number of detected genes for a retained cell
    max_mito_fraction : float
        Cells must have a mitochondrial fraction strictly below this value
    ingest_min_features : int
        Cells with fewer detected genes are dropped at ingestion,
        regardless of the other thresholds
    min_cells_per_gene : int
        Genes detected in fewer cells are dropped (0 disables)
    mito_prefixes : List[str]
        Gene identifier prefixes marking mitochondrial genes
    """

    min_features: int = 200
    max_features: int = 2500
    max_mito_fraction: float = 0.05
    ingest_min_features: int = 1
    min_cells_per_gene: int = 0
    mito_prefixes: List[str] = field(default_factory=lambda: ["MT-", "mt-"])


@dataclass
class NormalizationConfig:
    """Configuration for normalization and feature selection.

    Attributes
    ----------
    target_sum : float
        Library size every cell is scaled to before log1p
    n_variable_features : int
        Number of variable features to select
    min_mean : float
        Minimum mean normalized expression for a feature candidate
    loess_span : float
        Fraction of genes used for each local fit of the mean-variance trend
    scale_max_value : float
        Clip scaled values to this magnitude
    """

    target_sum: float = 1e4
    n_variable_features: int = 2000
    min_mean: float = 1e-3
    loess_span: float = 0.3
    scale_max_value: float = 10.0


@dataclass
class PreprocessingConfig:
    """Master configuration for preprocessing.

    Attributes
    ----------
    qc : QCConfig
        QC configuration
    normalization : NormalizationConfig
        Normalization configuration
    """

    qc: QCConfig = field(default_factory=QCConfig)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PreprocessingConfig":
        """Create PreprocessingConfig from a dictionary."""
        data = data or {}
        return cls(
            qc=QCConfig(**data.get("qc", {})),
            normalization=NormalizationConfig(**data.get("normalization", {})),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "PreprocessingConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested preprocessing section
        if "preprocessing" in data:
            data = data["preprocessing"]

        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "PreprocessingConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "qc": {
                "min_features": self.qc.min_features,
                "max_features": self.qc.max_features,
                "max_mito_fraction": self.qc.max_mito_fraction,
                "ingest_min_features": self.qc.ingest_min_features,
                "min_cells_per_gene": self.qc.min_cells_per_gene,
                "mito_prefixes": list(self.qc.mito_prefixes),
            },
            "normalization": {
                "target_sum": self.normalization.target_sum,
                "n_variable_features": self.normalization.n_variable_features,
                "min_mean": self.normalization.min_mean,
                "loess_span": self.normalization.loess_span,
                "scale_max_value": self.normalization.scale_max_value,
            },
        }
