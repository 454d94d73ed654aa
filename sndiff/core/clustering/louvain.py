"""Seeded Louvain modularity optimization on a weighted sparse graph.

The node visiting order is drawn from a seeded generator, a node only
leaves its community for a strictly better one, and equal gains resolve
to the lowest community id, so repeated runs with the same seed give
identical partitions.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
from scipy import sparse

from ...utils.cancel import CancelToken, check_cancelled

# Gains closer than this are treated as equal
GAIN_TOLERANCE = 1e-12


@dataclass
class LouvainResult:
    """Raw Louvain output before size-ordered relabeling.

    Attributes
    ----------
    membership : np.ndarray
        Community index per node
    modularity : float
        Modularity of the final partition on the input graph
    n_levels : int
        Aggregation levels that moved at least one node
    """

    membership: np.ndarray
    modularity: float
    n_levels: int


def modularity(
    adjacency: sparse.spmatrix,
    membership: np.ndarray,
    resolution: float = 1.0,
) -> float:
    """Newman-Girvan modularity with a resolution parameter.

    Parameters
    ----------
    adjacency : sparse.spmatrix
        Symmetric weighted adjacency matrix
    membership : np.ndarray
        Community index per node
    resolution : float
        Weight of the null-model term

    Returns
    -------
    float
        Modularity; 0.0 for a graph without edges
    """
    adjacency = sparse.csr_matrix(adjacency)
    two_m = float(adjacency.sum())
    if two_m == 0:
        return 0.0
    membership = np.asarray(membership)
    degrees = np.asarray(adjacency.sum(axis=1)).ravel()
    coo = adjacency.tocoo()
    internal = float(coo.data[membership[coo.row] == membership[coo.col]].sum())
    totals = np.bincount(membership, weights=degrees)
    return internal / two_m - resolution * float(np.sum(totals ** 2)) / two_m ** 2


def _local_moving(
    adjacency: sparse.csr_matrix,
    resolution: float,
    rng: np.random.Generator,
    max_sweeps: int,
    cancel_token: Optional[CancelToken],
) -> Tuple[np.ndarray, bool]:
    """Move single nodes between communities until no move improves modularity."""
    n = adjacency.shape[0]
    indptr = adjacency.indptr.tolist()
    indices = adjacency.indices.tolist()
    data = adjacency.data.tolist()
    degrees = np.asarray(adjacency.sum(axis=1)).ravel().tolist()
    two_m = float(sum(degrees))

    membership = list(range(n))
    totals = list(degrees)
    order = rng.permutation(n).tolist()
    moved_any = False

    for sweep in range(max_sweeps):
        check_cancelled(cancel_token, "clustering")
        n_moved = 0
        for i in order:
            k_i = degrees[i]
            if k_i == 0:
                continue
            current = membership[i]

            links = {}
            for ptr in range(indptr[i], indptr[i + 1]):
                j = indices[ptr]
                if j == i:
                    continue
                c = membership[j]
                links[c] = links.get(c, 0.0) + data[ptr]

            totals[current] -= k_i
            scale = resolution * k_i / two_m
            best = current
            best_gain = links.get(current, 0.0) - scale * totals[current]
            for c in sorted(links):
                if c == current:
                    continue
                gain = links[c] - scale * totals[c]
                if gain > best_gain + GAIN_TOLERANCE:
                    best = c
                    best_gain = gain

            membership[i] = best
            totals[best] += k_i
            if best != current:
                n_moved += 1

        if n_moved == 0:
            break
        moved_any = True

    return np.asarray(membership, dtype=np.int64), moved_any


def _aggregate(adjacency: sparse.csr_matrix, membership: np.ndarray) -> sparse.csr_matrix:
    """Collapse communities into meta-nodes; internal weight becomes self loops."""
    n = adjacency.shape[0]
    n_comm = int(membership.max()) + 1
    projection = sparse.csr_matrix(
        (np.ones(n), (np.arange(n), membership)), shape=(n, n_comm)
    )
    aggregated = (projection.T @ adjacency @ projection).tocsr()
    aggregated.sort_indices()
    return aggregated


def louvain(
    adjacency: sparse.spmatrix,
    resolution: float,
    random_seed: int = 0,
    multilevel: bool = True,
    max_levels: int = 10,
    max_sweeps: int = 100,
    cancel_token: Optional[CancelToken] = None,
) -> LouvainResult:
    """Partition a weighted undirected graph by modularity.

    Parameters
    ----------
    adjacency : sparse.spmatrix
        Symmetric non-negative adjacency matrix
    resolution : float
        Modularity resolution
    random_seed : int
        Seed for node visiting order
    multilevel : bool
        Aggregate and repeat after each local-moving phase
    max_levels : int
        Maximum aggregation levels
    max_sweeps : int
        Maximum local-moving sweeps per level
    cancel_token : CancelToken, optional
        Checked between sweeps

    Returns
    -------
    LouvainResult
        Membership per node, final modularity and levels used
    """
    graph = sparse.csr_matrix(adjacency, dtype=np.float64)
    graph.sort_indices()
    n = graph.shape[0]
    rng = np.random.default_rng(random_seed)

    node_membership = np.arange(n, dtype=np.int64)
    levels: List[int] = []
    for level in range(max_levels):
        membership, moved = _local_moving(graph, resolution, rng, max_sweeps, cancel_token)
        if not moved:
            break
        # Renumber to consecutive ids in node order
        _, membership = np.unique(membership, return_inverse=True)
        node_membership = membership[node_membership]
        levels.append(int(membership.max()) + 1)
        if not multilevel or levels[-1] == graph.shape[0]:
            break
        graph = _aggregate(graph, membership)

    _, node_membership = np.unique(node_membership, return_inverse=True)
    return LouvainResult(
        membership=node_membership.astype(np.int64),
        modularity=modularity(adjacency, node_membership, resolution),
        n_levels=len(levels),
    )
