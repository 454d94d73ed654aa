"""Configuration classes for the clustering module.

Neighbor count, embedding dimensionality and clustering resolution have no
defaults: they are dataset-dependent and must be supplied by the caller.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


@dataclass
class ReductionConfig:
    """Configuration for PCA.

    Attributes
    ----------
    n_components : int
        Number of principal components to retain
    solver : str
        "full" (exact LAPACK SVD) or "randomized" (for large matrices)
    random_seed : int
        Seed for the randomized solver
    """

    n_components: int = 30
    solver: str = "full"
    random_seed: int = 0


@dataclass
class GraphConfig:
    """Configuration for the shared-neighbor graph.

    Attributes
    ----------
    n_neighbors : int
        Nearest neighbors per cell (m), required
    n_dims : int
        Leading principal components used for distances (d), required
    prune : float
        Jaccard weights below this value are dropped
    n_jobs : int
        Parallel jobs for the neighbor search
    """

    n_neighbors: Optional[int] = None
    n_dims: Optional[int] = None
    prune: float = 1.0 / 15.0
    n_jobs: int = 1


@dataclass
class ClusteringConfig:
    """Configuration for Louvain modularity clustering.

    Attributes
    ----------
    resolution : float
        Modularity resolution, required; higher gives more clusters
    random_seed : int
        Seed for the node visiting order
    multilevel : bool
        Aggregate communities into meta-nodes and repeat
    max_levels : int
        Maximum number of aggregation levels
    max_sweeps : int
        Maximum local-moving sweeps per level
    """

    resolution: Optional[float] = None
    random_seed: int = 0
    multilevel: bool = True
    max_levels: int = 10
    max_sweeps: int = 100


@dataclass
class EmbeddingConfig:
    """Configuration for the 2-D UMAP layout.

    Attributes
    ----------
    enabled : bool
        Compute the layout during a pipeline run
    min_dist : float
        Minimum distance between embedded points
    spread : float
        Effective scale of embedded points
    n_epochs : int, optional
        Optimization epochs (umap default if None)
    random_seed : int
        Seed for the layout optimization
    """

    enabled: bool = True
    min_dist: float = 0.3
    spread: float = 1.0
    n_epochs: Optional[int] = None
    random_seed: int = 0


@dataclass
class DEConfig:
    """Configuration for differential expression.

    Attributes
    ----------
    correction : str
        Multiple testing correction ("fdr_bh", "bonferroni", "holm", "none")
    pseudocount : float
        Added to group means before log2
    min_pct : float
        Minimum detection fraction in either group for a gene to be tested
    logfc_threshold : float
        Minimum absolute log2 fold-change for a gene to be tested
    report_untested : bool
        Report zero-variance genes with fold-change 0 and p-value 1
    gene_chunk_size : int
        Genes densified per rank-sum batch
    condition_col : str
        Cell metadata column carrying the tissue condition
    condition_1 : str, optional
        First condition for per-cluster comparisons
    condition_2 : str, optional
        Second condition for per-cluster comparisons
    """

    correction: str = "fdr_bh"
    pseudocount: float = 1.0
    min_pct: float = 0.0
    logfc_threshold: float = 0.0
    report_untested: bool = False
    gene_chunk_size: int = 2000
    condition_col: str = "condition_label"
    condition_1: Optional[str] = None
    condition_2: Optional[str] = None


@dataclass
class ClusterStageConfig:
    """Master configuration for reduction, clustering, layout and DE.

    Attributes
    ----------
    reduction : ReductionConfig
        PCA configuration
    graph : GraphConfig
        Neighbor graph configuration
    clustering : ClusteringConfig
        Louvain configuration
    embedding : EmbeddingConfig
        UMAP configuration
    de : DEConfig
        Differential expression configuration
    """

    reduction: ReductionConfig = field(default_factory=ReductionConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    de: DEConfig = field(default_factory=DEConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ClusterStageConfig":
        """Create ClusterStageConfig from a dictionary."""
        data = data or {}
        return cls(
            reduction=ReductionConfig(**data.get("reduction", {})),
            graph=GraphConfig(**data.get("graph", {})),
            clustering=ClusteringConfig(**data.get("clustering", {})),
            embedding=EmbeddingConfig(**data.get("embedding", {})),
            de=DEConfig(**data.get("de", {})),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "ClusterStageConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested clustering section
        if "clustering_stage" in data:
            data = data["clustering_stage"]

        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "reduction": {
                "n_components": self.reduction.n_components,
                "solver": self.reduction.solver,
                "random_seed": self.reduction.random_seed,
            },
            "graph": {
                "n_neighbors": self.graph.n_neighbors,
                "n_dims": self.graph.n_dims,
                "prune": self.graph.prune,
                "n_jobs": self.graph.n_jobs,
            },
            "clustering": {
                "resolution": self.clustering.resolution,
                "random_seed": self.clustering.random_seed,
                "multilevel": self.clustering.multilevel,
                "max_levels": self.clustering.max_levels,
                "max_sweeps": self.clustering.max_sweeps,
            },
            "embedding": {
                "enabled": self.embedding.enabled,
                "min_dist": self.embedding.min_dist,
                "spread": self.embedding.spread,
                "n_epochs": self.embedding.n_epochs,
                "random_seed": self.embedding.random_seed,
            },
            "de": {
                "correction": self.de.correction,
                "pseudocount": self.de.pseudocount,
                "min_pct": self.de.min_pct,
                "logfc_threshold": self.de.logfc_threshold,
                "report_untested": self.de.report_untested,
                "gene_chunk_size": self.de.gene_chunk_size,
                "condition_col": self.de.condition_col,
                "condition_1": self.de.condition_1,
                "condition_2": self.de.condition_2,
            },
        }
