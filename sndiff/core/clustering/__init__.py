"""Clustering module for cell population identification.

Pipeline Stages
---------------
- PCA: truncated SVD of the scaled variable features
- Graph: Jaccard shared-nearest-neighbor graph over the leading components
- Louvain: seeded modularity clustering, ids ordered by cluster size
- Layout: 2-D UMAP for visualization
- DE: Wilcoxon rank-sum comparisons between clusters or conditions

Example Usage
-------------
>>> from sndiff.core.clustering import ClusteringEngine, ClusterStageConfig, DERunner
>>> config = ClusterStageConfig.from_yaml("config.yaml")
>>> engine = ClusteringEngine(config)
>>> result = engine.run(scaled)
>>> runner = DERunner(config.de)
>>> de = runner.compare(normalized, result.labeling, 0, 1)
"""

__version__ = "0.1.0"

# Configuration classes
from .config import (
    ReductionConfig,
    GraphConfig,
    ClusteringConfig,
    EmbeddingConfig,
    DEConfig,
    ClusterStageConfig,
)

# Dimensionality reduction and graph
from .pca import Embedding, PCAReducer
from .graph import GraphBuilder, NeighborGraph
from .louvain import LouvainResult, louvain, modularity

# Labels
from .labels import (
    ClusterLabeling,
    composition_table,
    relabel_by_size,
    split_by_condition,
)

# Engines
from .engine import ClusteringEngine, ClusteringResult
from .embedding import UMAPEmbedder
from .de import (
    ConditionDEResult,
    DERecord,
    DEResult,
    DERunner,
    annotate_de_results,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "ReductionConfig",
    "GraphConfig",
    "ClusteringConfig",
    "EmbeddingConfig",
    "DEConfig",
    "ClusterStageConfig",
    # Reduction and graph
    "Embedding",
    "PCAReducer",
    "GraphBuilder",
    "NeighborGraph",
    "LouvainResult",
    "louvain",
    "modularity",
    # Labels
    "ClusterLabeling",
    "composition_table",
    "relabel_by_size",
    "split_by_condition",
    # Engines
    "ClusteringEngine",
    "ClusteringResult",
    "UMAPEmbedder",
    # DE
    "ConditionDEResult",
    "DERecord",
    "DEResult",
    "DERunner",
    "annotate_de_results",
]
