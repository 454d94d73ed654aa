"""Shared-nearest-neighbor graph construction.

Each cell's neighbor set is itself plus its m nearest cells in the leading
principal components. Two cells are linked with the Jaccard overlap of
their neighbor sets; links below the prune threshold are dropped.
"""

from dataclasses import dataclass
from typing import Optional

import logging

import numpy as np
import pandas as pd
from scipy import sparse
from scipy.sparse.csgraph import connected_components
from sklearn.neighbors import NearestNeighbors

from ...errors import InputShapeError
from ..data import freeze
from .config import GraphConfig
from .pca import Embedding


@dataclass(frozen=True)
class NeighborGraph:
    """Weighted undirected shared-neighbor graph over cells.

    Attributes
    ----------
    cell_ids : pd.Index
        Cell identifiers (node order)
    knn_indices : np.ndarray
        Indices of the m nearest other cells, shape (n_cells, m)
    knn_distances : np.ndarray
        Euclidean distances to those cells, shape (n_cells, m)
    weights : sparse.csr_matrix
        Symmetric Jaccard weights in (0, 1], empty diagonal
    n_neighbors : int
        Neighbors per cell (m)
    n_dims : int
        Principal components used for distances (d)
    prune : float
        Weight floor applied when building
    """

    cell_ids: pd.Index
    knn_indices: np.ndarray
    knn_distances: np.ndarray
    weights: sparse.csr_matrix
    n_neighbors: int
    n_dims: int
    prune: float

    @property
    def n_cells(self) -> int:
        return self.weights.shape[0]

    @property
    def n_edges(self) -> int:
        return int(sparse.triu(self.weights, k=1).nnz)

    def n_components(self) -> int:
        """Number of connected components."""
        n, _ = connected_components(self.weights, directed=False)
        return int(n)

    def distance_matrix(self) -> sparse.csr_matrix:
        """kNN distances as a sparse (n_cells, n_cells) matrix."""
        n, m = self.knn_indices.shape
        rows = np.repeat(np.arange(n), m)
        return sparse.csr_matrix(
            (self.knn_distances.ravel(), (rows, self.knn_indices.ravel())),
            shape=(n, n),
        )

    def edges_frame(self) -> pd.DataFrame:
        """Upper-triangle edge list with cell ids and weights."""
        upper = sparse.triu(self.weights, k=1).tocoo()
        return pd.DataFrame(
            {
                "cell_1": self.cell_ids[upper.row],
                "cell_2": self.cell_ids[upper.col],
                "weight": upper.data,
            }
        )


class GraphBuilder:
    """Builds the shared-neighbor graph from a PCA embedding.

    Parameters
    ----------
    config : GraphConfig, optional
        Graph configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> builder = GraphBuilder(GraphConfig(n_neighbors=20, n_dims=10))
    >>> graph = builder.build_graph(embedding)
    >>> graph.weights.shape
    (n_cells, n_cells)
    """

    def __init__(
        self,
        config: Optional[GraphConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or GraphConfig()
        self.logger = logger or logging.getLogger(__name__)

    def build_graph(
        self,
        embedding: Embedding,
        n_neighbors: Optional[int] = None,
        n_dims: Optional[int] = None,
        prune: Optional[float] = None,
        n_jobs: Optional[int] = None,
    ) -> NeighborGraph:
        """Build the Jaccard shared-neighbor graph.

        Parameters
        ----------
        embedding : Embedding
            PCA embedding of the cells
        n_neighbors : int, optional
            Neighbors per cell (m). Uses config value if None.
        n_dims : int, optional
            Leading components used for distances (d). Uses config value if None.
        prune : float, optional
            Weight floor. Uses config default if None.
        n_jobs : int, optional
            Parallel jobs for the neighbor search. Uses config default if None.

        Returns
        -------
        NeighborGraph
            Symmetric weighted graph without self loops

        Raises
        ------
        ValueError
            If the neighbor count or dimensionality was never supplied
        InputShapeError
            If the embedding has fewer than two cells
        """
        cfg = self.config
        n_neighbors = n_neighbors if n_neighbors is not None else cfg.n_neighbors
        n_dims = n_dims if n_dims is not None else cfg.n_dims
        prune = prune if prune is not None else cfg.prune
        n_jobs = n_jobs if n_jobs is not None else cfg.n_jobs

        if n_neighbors is None or n_dims is None:
            raise ValueError("Graph construction requires n_neighbors and n_dims")
        if n_neighbors < 1 or n_dims < 1:
            raise ValueError(
                f"n_neighbors and n_dims must be positive (got {n_neighbors}, {n_dims})"
            )

        n_cells = embedding.scores.shape[0]
        if n_cells < 2:
            raise InputShapeError(f"Need at least 2 cells to build a graph, got {n_cells}")

        if n_dims > embedding.n_components:
            self.logger.warning(
                "Requested %d dimensions but embedding has %d components; using %d",
                n_dims,
                embedding.n_components,
                embedding.n_components,
            )
            n_dims = embedding.n_components
        if n_neighbors > n_cells - 1:
            self.logger.warning(
                "Requested %d neighbors for %d cells; using %d",
                n_neighbors,
                n_cells,
                n_cells - 1,
            )
            n_neighbors = n_cells - 1

        coords = np.ascontiguousarray(embedding.scores[:, :n_dims])
        nn = NearestNeighbors(n_neighbors=n_neighbors + 1, n_jobs=n_jobs)
        nn.fit(coords)
        distances, indices = nn.kneighbors(coords)

        # Drop self from each row; duplicated points may push it out of first place
        is_self = indices == np.arange(n_cells)[:, np.newaxis]
        order = np.argsort(is_self, axis=1, kind="stable")
        knn_indices = np.take_along_axis(indices, order, axis=1)[:, :n_neighbors]
        knn_distances = np.take_along_axis(distances, order, axis=1)[:, :n_neighbors]

        # Neighbor-set indicator including self
        set_size = n_neighbors + 1
        rows = np.repeat(np.arange(n_cells), set_size)
        cols = np.hstack([np.arange(n_cells)[:, np.newaxis], knn_indices]).ravel()
        indicator = sparse.csr_matrix(
            (np.ones(rows.size), (rows, cols)), shape=(n_cells, n_cells)
        )

        shared = (indicator @ indicator.T).tocoo()
        jaccard = shared.data / (2.0 * set_size - shared.data)
        keep = (shared.row != shared.col) & (jaccard >= prune)
        weights = sparse.csr_matrix(
            (jaccard[keep], (shared.row[keep], shared.col[keep])),
            shape=(n_cells, n_cells),
        )
        weights.sort_indices()

        graph = NeighborGraph(
            cell_ids=embedding.cell_ids,
            knn_indices=freeze(knn_indices),
            knn_distances=freeze(knn_distances),
            weights=weights,
            n_neighbors=int(n_neighbors),
            n_dims=int(n_dims),
            prune=float(prune),
        )
        self.logger.info(
            "Built shared-neighbor graph: %d cells, %d edges (m=%d, d=%d, prune=%.4f)",
            n_cells,
            graph.n_edges,
            n_neighbors,
            n_dims,
            prune,
        )
        return graph
