"""Clustering engine for cell population identification.

Provides PCA, shared-neighbor graph construction, Louvain clustering and
an optional UMAP layout.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging
import warnings

import pandas as pd

from ...errors import DisconnectedGraphWarning
from ...utils.cancel import CancelToken, check_cancelled
from ..preprocessing.normalization import ScaledMatrix
from .config import ClusterStageConfig
from .embedding import UMAPEmbedder
from .graph import GraphBuilder, NeighborGraph
from .labels import ClusterLabeling, relabel_by_size
from .louvain import louvain
from .pca import Embedding, PCAReducer


@dataclass
class ClusteringResult:
    """Result from the clustering stage.

    Attributes
    ----------
    embedding : Embedding
        PCA embedding
    graph : NeighborGraph
        Shared-neighbor graph
    labeling : ClusterLabeling
        Cluster assignments
    layout : pd.DataFrame, optional
        2-D UMAP coordinates indexed by cell id
    n_components : int
        Connected components of the graph
    """

    embedding: Embedding
    graph: NeighborGraph
    labeling: ClusterLabeling
    layout: Optional[pd.DataFrame] = None
    n_components: int = 1

    @property
    def n_clusters(self) -> int:
        return self.labeling.n_clusters

    @property
    def cluster_sizes(self) -> Dict[int, int]:
        return self.labeling.cluster_sizes

    def to_dict(self) -> Dict[str, Any]:
        """Summary for serialization."""
        return {
            "n_clusters": self.n_clusters,
            "cluster_sizes": {str(k): v for k, v in self.cluster_sizes.items()},
            "modularity": self.labeling.modularity,
            "resolution": self.labeling.resolution,
            "n_components": self.n_components,
            "n_pcs": self.embedding.n_components,
            "explained_variance_ratio": [
                float(v) for v in self.embedding.explained_variance_ratio
            ],
            "n_edges": self.graph.n_edges,
        }


class ClusteringEngine:
    """Clustering engine with Louvain modularity optimization.

    Provides the core clustering pipeline: PCA → SNN graph → Louvain
    (→ UMAP optional).

    Parameters
    ----------
    config : ClusterStageConfig, optional
        Clustering stage configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from sndiff.core.clustering import ClusteringEngine, ClusterStageConfig
    >>> config = ClusterStageConfig()
    >>> config.graph.n_neighbors, config.graph.n_dims = 20, 10
    >>> config.clustering.resolution = 0.8
    >>> engine = ClusteringEngine(config)
    >>> result = engine.run(scaled)
    """

    def __init__(
        self,
        config: Optional[ClusterStageConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ClusterStageConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.reducer = PCAReducer(self.config.reduction, logger=self.logger)
        self.graph_builder = GraphBuilder(self.config.graph, logger=self.logger)

    def cluster(
        self,
        graph: NeighborGraph,
        resolution: Optional[float] = None,
        random_seed: Optional[int] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> ClusterLabeling:
        """Partition the graph by Louvain modularity optimization.

        Parameters
        ----------
        graph : NeighborGraph
            Shared-neighbor graph
        resolution : float, optional
            Modularity resolution. Uses config value if None.
        random_seed : int, optional
            Seed for the node order. Uses config default if None.
        cancel_token : CancelToken, optional
            Checked between local-moving sweeps

        Returns
        -------
        ClusterLabeling
            Cluster ids numbered by descending cluster size

        Warns
        -----
        DisconnectedGraphWarning
            If the graph has more than one connected component
        """
        cfg = self.config.clustering
        resolution = resolution if resolution is not None else cfg.resolution
        random_seed = random_seed if random_seed is not None else cfg.random_seed
        if resolution is None:
            raise ValueError("Clustering requires a resolution")

        n_components = graph.n_components()
        if n_components > 1:
            self.logger.warning(
                "Neighbor graph has %d connected components; clusters will not span them",
                n_components,
            )
            warnings.warn(
                f"Neighbor graph has {n_components} connected components",
                DisconnectedGraphWarning,
                stacklevel=2,
            )

        self.logger.info(
            "Running Louvain clustering: resolution=%.3f, seed=%d, multilevel=%s",
            resolution,
            random_seed,
            cfg.multilevel,
        )
        raw = louvain(
            graph.weights,
            resolution=resolution,
            random_seed=random_seed,
            multilevel=cfg.multilevel,
            max_levels=cfg.max_levels,
            max_sweeps=cfg.max_sweeps,
            cancel_token=cancel_token,
        )
        labels = pd.Series(
            relabel_by_size(raw.membership),
            index=graph.cell_ids,
            name="cluster_id",
        )
        labeling = ClusterLabeling(
            labels=labels,
            resolution=float(resolution),
            random_seed=int(random_seed),
            modularity=float(raw.modularity),
            n_levels=raw.n_levels,
        )
        self.logger.info(
            "Found %d clusters (modularity=%.4f, levels=%d)",
            labeling.n_clusters,
            labeling.modularity,
            labeling.n_levels,
        )
        return labeling

    def run(
        self,
        scaled: ScaledMatrix,
        compute_layout: Optional[bool] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> ClusteringResult:
        """Run the full clustering pipeline.

        Pipeline: PCA → SNN graph → Louvain (→ UMAP optional)

        Parameters
        ----------
        scaled : ScaledMatrix
            Scaled variable features
        compute_layout : bool, optional
            Compute the UMAP layout. Uses config default if None.
        cancel_token : CancelToken, optional
            Checked between steps

        Returns
        -------
        ClusteringResult
            Embedding, graph, labels and optional layout
        """
        compute_layout = (
            compute_layout if compute_layout is not None else self.config.embedding.enabled
        )

        check_cancelled(cancel_token, "dimensionality reduction")
        embedding = self.reducer.reduce(scaled)

        check_cancelled(cancel_token, "graph construction")
        graph = self.graph_builder.build_graph(embedding)

        check_cancelled(cancel_token, "clustering")
        labeling = self.cluster(graph, cancel_token=cancel_token)

        layout = None
        if compute_layout:
            check_cancelled(cancel_token, "embedding")
            embedder = UMAPEmbedder(self.config.embedding, logger=self.logger)
            layout = embedder.embed(embedding, graph)

        return ClusteringResult(
            embedding=embedding,
            graph=graph,
            labeling=labeling,
            layout=layout,
            n_components=graph.n_components(),
        )
