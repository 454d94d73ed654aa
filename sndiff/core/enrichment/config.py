"""Configuration classes for the enrichment module."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


@dataclass
class PermutationConfig:
    """Configuration for the permutation null.

    Attributes
    ----------
    n_permutations : int
        Number of gene-to-score reshuffles
    random_seed : int
        Base seed (permutation i uses random_seed + i)
    n_jobs : int
        Parallel jobs for permutations (1 runs sequentially)
    batch_size : int
        Batch size for joblib
    chunk_size : int
        Permutations dispatched between cancellation checks
    """

    n_permutations: int = 1000
    random_seed: int = 42
    n_jobs: int = 1
    batch_size: int = 16
    chunk_size: int = 250


@dataclass
class EnrichmentConfig:
    """Configuration for ranked gene-set enrichment.

    Attributes
    ----------
    score_floor : float
        Genes with |score| below this value are not ranked
    min_genes : int
        Minimum ranked genes required to run
    min_size : int
        Smallest pathway (after restricting to ranked genes) that is tested
    max_size : int
        Largest pathway that is tested
    weight : float
        Exponent applied to |score| for the hit step
    correction : str
        Multiple testing correction across tested pathways
    per_cluster : bool
        Also score every per-cluster condition comparison in a pipeline run
    permutation : PermutationConfig
        Permutation null configuration
    """

    score_floor: float = 1.0
    min_genes: int = 10
    min_size: int = 3
    max_size: int = 800
    weight: float = 1.0
    correction: str = "fdr_bh"
    per_cluster: bool = False
    permutation: PermutationConfig = field(default_factory=PermutationConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EnrichmentConfig":
        """Create EnrichmentConfig from a dictionary."""
        data = dict(data or {})
        permutation = PermutationConfig(**data.pop("permutation", {}))
        return cls(permutation=permutation, **data)

    @classmethod
    def from_yaml(cls, path: Path) -> "EnrichmentConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested enrichment section
        if "enrichment" in data:
            data = data["enrichment"]

        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "EnrichmentConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "score_floor": self.score_floor,
            "min_genes": self.min_genes,
            "min_size": self.min_size,
            "max_size": self.max_size,
            "weight": self.weight,
            "correction": self.correction,
            "per_cluster": self.per_cluster,
            "permutation": {
                "n_permutations": self.permutation.n_permutations,
                "random_seed": self.permutation.random_seed,
                "n_jobs": self.permutation.n_jobs,
                "batch_size": self.permutation.batch_size,
                "chunk_size": self.permutation.chunk_size,
            },
        }
