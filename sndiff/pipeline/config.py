"""Master configuration for an analysis run.

Example YAML::

    preprocessing:
      qc: {min_features: 200, max_features: 2500, max_mito_fraction: 0.05}
      normalization: {target_sum: 10000, n_variable_features: 2000}
    clustering:
      reduction: {n_components: 30}
      graph: {n_neighbors: 20, n_dims: 10}
      clustering: {resolution: 0.8, random_seed: 0}
      de: {condition_1: disease, condition_2: control}
    enrichment:
      score_floor: 1.0
      permutation: {n_permutations: 1000, random_seed: 42, n_jobs: 4}
    output:
      output_dir: results
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..core.clustering.config import ClusterStageConfig
from ..core.enrichment.config import EnrichmentConfig
from ..core.preprocessing.config import PreprocessingConfig


@dataclass
class OutputConfig:
    """Where and what to write.

    Attributes
    ----------
    output_dir : str, optional
        Directory for tables and the run summary; nothing written if None
    log_dir : str, optional
        Directory for the run log (defaults to <output_dir>/logs)
    log_level : str
        Logging level
    write_embedding : bool
        Write PCA scores and the UMAP layout
    """

    output_dir: Optional[str] = None
    log_dir: Optional[str] = None
    log_level: str = "INFO"
    write_embedding: bool = True


@dataclass
class AnalysisConfig:
    """Configuration for all stages of an analysis run.

    Attributes
    ----------
    preprocessing : PreprocessingConfig
        QC and normalization
    clustering : ClusterStageConfig
        Reduction, graph, clustering, layout and DE
    enrichment : EnrichmentConfig
        Gene-set enrichment
    output : OutputConfig
        Output locations
    """

    preprocessing: PreprocessingConfig = field(default_factory=PreprocessingConfig)
    clustering: ClusterStageConfig = field(default_factory=ClusterStageConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AnalysisConfig":
        """Create AnalysisConfig from a dictionary."""
        data = data or {}
        unknown = set(data) - {"preprocessing", "clustering", "enrichment", "output"}
        if unknown:
            raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")
        return cls(
            preprocessing=PreprocessingConfig.from_dict(data.get("preprocessing")),
            clustering=ClusterStageConfig.from_dict(data.get("clustering")),
            enrichment=EnrichmentConfig.from_dict(data.get("enrichment")),
            output=OutputConfig(**(data.get("output") or {})),
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "AnalysisConfig":
        """Load configuration from YAML file.

        Raises
        ------
        FileNotFoundError
            If the file does not exist
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "AnalysisConfig":
        """Create default configuration (required fields still unset)."""
        return cls()

    def missing_required(self) -> List[str]:
        """Dataset-dependent parameters that have not been supplied."""
        missing = []
        if self.clustering.graph.n_neighbors is None:
            missing.append("clustering.graph.n_neighbors")
        if self.clustering.graph.n_dims is None:
            missing.append("clustering.graph.n_dims")
        if self.clustering.clustering.resolution is None:
            missing.append("clustering.clustering.resolution")
        return missing

    def validate(self) -> None:
        """Raise ValueError if a required parameter is missing."""
        missing = self.missing_required()
        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "preprocessing": self.preprocessing.to_dict(),
            "clustering": self.clustering.to_dict(),
            "enrichment": self.enrichment.to_dict(),
            "output": {
                "output_dir": self.output.output_dir,
                "log_dir": self.output.log_dir,
                "log_level": self.output.log_level,
                "write_embedding": self.output.write_embedding,
            },
        }

    def to_yaml(self, path: Union[str, Path]) -> Path:
        """Write configuration to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)
        return path
