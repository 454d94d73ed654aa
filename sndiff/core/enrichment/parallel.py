"""Running-sum statistic and parallel permutation nulls.

Each permutation reshuffles the gene-to-rank assignment with its own seed
(base_seed + permutation index) and scores every pathway against it.
Results are collected in permutation order regardless of which worker
finishes first.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence, Tuple
import logging

import numpy as np
from joblib import Parallel, delayed

from ...utils.cancel import CancelToken, check_cancelled

logger = logging.getLogger(__name__)


def enrichment_statistic(
    weights: np.ndarray,
    hit_positions: np.ndarray,
) -> Tuple[float, int]:
    """Weighted running-sum enrichment score of one gene set.

    The walk adds ``weight / sum(hit weights)`` at every hit and subtracts
    ``1 / (N - N_hits)`` at every miss. Extremes can only occur right after
    a hit (maximum) or right before one (minimum), so only hit positions
    are visited.

    Parameters
    ----------
    weights : np.ndarray
        Step weight of every ranked gene, in rank order
    hit_positions : np.ndarray
        Sorted ranks of the gene-set members

    Returns
    -------
    Tuple[float, int]
        Enrichment score (signed maximum deviation) and the rank at which
        it is reached
    """
    n_genes = weights.size
    n_hits = hit_positions.size
    hit_weights = weights[hit_positions]
    norm = hit_weights.sum()
    if n_hits == 0 or n_hits >= n_genes or norm <= 0:
        return 0.0, -1

    miss_step = 1.0 / (n_genes - n_hits)
    misses_before = hit_positions - np.arange(n_hits)
    after_hit = np.cumsum(hit_weights) / norm - misses_before * miss_step
    before_hit = after_hit - hit_weights / norm

    i_max = int(np.argmax(after_hit))
    i_min = int(np.argmin(before_hit))
    if after_hit[i_max] >= -before_hit[i_min]:
        return float(after_hit[i_max]), int(hit_positions[i_max])
    return float(before_hit[i_min]), int(hit_positions[i_min]) - 1


def compute_single_permutation(
    weights: np.ndarray,
    gene_sets: Sequence[np.ndarray],
    seed: int,
) -> np.ndarray:
    """Score every gene set against one reshuffled ranking.

    This function is designed to be called in parallel.

    Parameters
    ----------
    weights : np.ndarray
        Step weights in rank order
    gene_sets : Sequence[np.ndarray]
        Member gene indices (into the ranked list) per gene set
    seed : int
        Random seed for this permutation

    Returns
    -------
    np.ndarray
        Enrichment score per gene set
    """
    rng = np.random.default_rng(seed)
    new_rank = rng.permutation(weights.size)
    scores = np.empty(len(gene_sets))
    for k, members in enumerate(gene_sets):
        scores[k], _ = enrichment_statistic(weights, np.sort(new_rank[members]))
    return scores


def batch_permutations_parallel(
    weights: np.ndarray,
    gene_sets: Sequence[np.ndarray],
    seeds: Sequence[int],
    n_jobs: int = 1,
    batch_size: int = 16,
) -> np.ndarray:
    """Run a block of permutations in parallel batches.

    Parameters
    ----------
    weights : np.ndarray
        Step weights in rank order
    gene_sets : Sequence[np.ndarray]
        Member gene indices per gene set
    seeds : Sequence[int]
        One seed per permutation
    n_jobs : int
        Number of parallel jobs
    batch_size : int
        Batch size for joblib

    Returns
    -------
    np.ndarray
        Null scores of shape (len(seeds), n_gene_sets), in seed order
    """
    results = Parallel(n_jobs=n_jobs, batch_size=batch_size, verbose=0)(
        delayed(compute_single_permutation)(weights, gene_sets, seed)
        for seed in seeds
    )
    return np.array(results).reshape(len(seeds), len(gene_sets))


def run_permutations(
    weights: np.ndarray,
    gene_sets: Sequence[np.ndarray],
    n_permutations: int,
    base_seed: int = 42,
    n_jobs: int = 1,
    batch_size: int = 16,
    chunk_size: int = 250,
    cancel_token: Optional[CancelToken] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> np.ndarray:
    """Build the permutation null for all gene sets.

    Permutations are dispatched in chunks; the cancellation token is
    checked before every chunk.

    Parameters
    ----------
    weights : np.ndarray
        Step weights in rank order
    gene_sets : Sequence[np.ndarray]
        Member gene indices per gene set
    n_permutations : int
        Number of permutations
    base_seed : int
        Base random seed (each permutation uses base_seed + index)
    n_jobs : int
        Number of parallel jobs (1 runs in-process)
    batch_size : int
        Batch size for joblib
    chunk_size : int
        Permutations per cancellation check
    cancel_token : CancelToken, optional
        Cancellation signal
    progress_callback : Callable, optional
        Callback(done, total) after every chunk

    Returns
    -------
    np.ndarray
        Null distribution of shape (n_permutations, n_gene_sets)
    """
    chunk_size = max(int(chunk_size), 1)
    blocks: List[np.ndarray] = []
    for start in range(0, n_permutations, chunk_size):
        check_cancelled(cancel_token, "permutation testing")
        seeds = range(base_seed + start, base_seed + min(start + chunk_size, n_permutations))
        if n_jobs == 1:
            block = np.array(
                [compute_single_permutation(weights, gene_sets, seed) for seed in seeds]
            ).reshape(len(seeds), len(gene_sets))
        else:
            block = batch_permutations_parallel(
                weights, gene_sets, list(seeds), n_jobs=n_jobs, batch_size=batch_size
            )
        blocks.append(block)
        done = start + len(seeds)
        logger.debug("Completed %d/%d permutations", done, n_permutations)
        if progress_callback is not None:
            progress_callback(done, n_permutations)

    if not blocks:
        return np.empty((0, len(gene_sets)))
    return np.vstack(blocks)
