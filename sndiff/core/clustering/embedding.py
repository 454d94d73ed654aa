"""Two-dimensional UMAP layout of cells for visualization.

The layout is computed by scanpy from the shared-neighbor graph and the
PCA scores, initialized from the first two principal components so that
repeated runs with the same seed are reproducible.
"""

from typing import Optional

import logging

import numpy as np
import pandas as pd

from .config import EmbeddingConfig
from .graph import NeighborGraph
from .pca import Embedding

LAYOUT_COLUMNS = ["UMAP1", "UMAP2"]


class UMAPEmbedder:
    """Computes a 2-D layout from a PCA embedding and neighbor graph.

    Parameters
    ----------
    config : EmbeddingConfig, optional
        Layout configuration
    logger : logging.Logger, optional
        Logger instance
    """

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or EmbeddingConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import scanpy
        except ImportError:
            raise RuntimeError(
                "UMAP layout requires scanpy. Install with: pip install scanpy"
            )

    def _initial_layout(self, scores: np.ndarray) -> np.ndarray:
        """First two principal components, or zeros padded for a 1-D embedding."""
        init = np.zeros((scores.shape[0], 2), dtype=np.float64)
        n = min(2, scores.shape[1])
        init[:, :n] = scores[:, :n]
        return init

    def embed(
        self,
        embedding: Embedding,
        graph: NeighborGraph,
        random_seed: Optional[int] = None,
    ) -> pd.DataFrame:
        """Lay out cells in two dimensions.

        Parameters
        ----------
        embedding : Embedding
            PCA embedding the graph was built from
        graph : NeighborGraph
            Shared-neighbor graph
        random_seed : int, optional
            Layout seed. Uses config default if None.

        Returns
        -------
        pd.DataFrame
            UMAP1 and UMAP2 coordinates indexed by cell id
        """
        import anndata as ad
        import scanpy as sc

        cfg = self.config
        random_seed = random_seed if random_seed is not None else cfg.random_seed

        init = self._initial_layout(embedding.scores)
        degenerate = graph.weights.nnz == 0 or embedding.scores.shape[1] < 2
        if degenerate:
            self.logger.warning(
                "Graph has no edges or embedding is one-dimensional; "
                "returning the principal-component layout"
            )
            return pd.DataFrame(init, index=graph.cell_ids, columns=LAYOUT_COLUMNS)

        adata = ad.AnnData(obs=pd.DataFrame(index=graph.cell_ids.copy()))
        adata.obsm["X_pca"] = np.asarray(embedding.scores[:, : graph.n_dims], dtype=np.float32)
        adata.obsm["X_init"] = init.astype(np.float32)
        adata.obsp["connectivities"] = graph.weights.astype(np.float32)
        adata.obsp["distances"] = graph.distance_matrix().astype(np.float32)
        adata.uns["neighbors"] = {
            "connectivities_key": "connectivities",
            "distances_key": "distances",
            "params": {
                "n_neighbors": graph.n_neighbors,
                "method": "umap",
                "metric": "euclidean",
                "random_state": random_seed,
                "use_rep": "X_pca",
                "n_pcs": graph.n_dims,
            },
        }

        self.logger.info(
            "Computing UMAP layout (min_dist=%.2f, spread=%.2f, seed=%d)",
            cfg.min_dist,
            cfg.spread,
            random_seed,
        )
        sc.tl.umap(
            adata,
            min_dist=cfg.min_dist,
            spread=cfg.spread,
            n_components=2,
            maxiter=cfg.n_epochs,
            init_pos="X_init",
            random_state=random_seed,
        )
        coords = np.asarray(adata.obsm["X_umap"], dtype=np.float64)
        return pd.DataFrame(coords, index=graph.cell_ids, columns=LAYOUT_COLUMNS)
