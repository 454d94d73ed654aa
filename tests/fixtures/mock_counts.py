"""Synthetic count generators for testing.

Provides small two-condition single-nucleus count matrices with known
structure (marker blocks per population, planted condition effects) so
tests can check outcomes without real data.
"""

from typing import Dict, List, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import sparse

from sndiff.core.clustering import Embedding
from sndiff.core.data import CountMatrix
from sndiff.core.preprocessing import NormalizedMatrix, ScaledMatrix

CONDITIONS = ("control", "disease")


def planted_gene_ids(n_planted: int = 5) -> List[str]:
    """Ids of the genes up-regulated in the second condition."""
    return [f"GENE{i:03d}" for i in range(n_planted)]


def create_mock_counts(
    n_cells: int = 120,
    n_genes: int = 60,
    n_populations: int = 2,
    n_planted: int = 5,
    planted_fold: float = 8.0,
    marker_fold: float = 6.0,
    seed: int = 42,
    conditions: Sequence[str] = CONDITIONS,
) -> Tuple[CountMatrix, pd.DataFrame]:
    """Create a Poisson count matrix with populations and a condition effect.

    Cells alternate between populations, and within each population
    between conditions, so every population is balanced across conditions.
    Genes ``GENE000``..``GENE{n_planted-1}`` are ``planted_fold`` times
    higher in the second condition. Each population has a block of ten
    marker genes starting at ``GENE010``. The last two genes are
    mitochondrial (``MT-CO1``, ``MT-ND1``).

    Parameters
    ----------
    n_cells : int
        Number of cells
    n_genes : int
        Number of genes, including the two mitochondrial genes
    n_populations : int
        Number of cell populations
    n_planted : int
        Number of condition-responsive genes
    planted_fold : float
        Rate multiplier of planted genes in the second condition
    marker_fold : float
        Rate multiplier of marker genes in their population
    seed : int
        Random seed for reproducibility
    conditions : Sequence[str]
        The two condition labels

    Returns
    -------
    Tuple[CountMatrix, pd.DataFrame]
        Counts and cell metadata (``sample``, ``condition_label``,
        ``population``) indexed by cell id
    """
    rng = np.random.default_rng(seed)

    gene_ids = [f"GENE{i:03d}" for i in range(n_genes - 2)] + ["MT-CO1", "MT-ND1"]
    cell_ids = [f"cell_{i:04d}" for i in range(n_cells)]

    population = np.arange(n_cells) % n_populations
    in_second = (np.arange(n_cells) // n_populations) % 2 == 1
    condition = np.where(in_second, conditions[1], conditions[0])

    base = rng.uniform(1.0, 4.0, size=n_genes)
    base[-2:] = 0.5
    rates = np.tile(base, (n_cells, 1))

    rates[np.ix_(in_second, np.arange(n_planted))] *= planted_fold
    for p in range(n_populations):
        block = np.arange(10 + 10 * p, min(20 + 10 * p, n_genes - 2))
        rates[np.ix_(population == p, block)] *= marker_fold

    counts = rng.poisson(rates)
    matrix = CountMatrix.build(sparse.csr_matrix(counts), cell_ids, gene_ids)

    metadata = pd.DataFrame(
        {
            "sample": [f"{c}_{i % 2}" for i, c in enumerate(condition)],
            "condition_label": condition,
            "population": population,
        },
        index=pd.Index(cell_ids, name="cell_id"),
    )
    return matrix, metadata


def create_mock_gene_sets(n_planted: int = 5) -> Dict[str, List[str]]:
    """Pathways covering the planted genes, a marker block and a tiny set."""
    return {
        "PLANTED_RESPONSE": planted_gene_ids(n_planted) + ["NOT_A_GENE"],
        "POPULATION_0_MARKERS": [f"GENE{i:03d}" for i in range(10, 20)],
        "TINY_SET": ["GENE000"],
    }


def create_mock_gene_metadata(gene_ids: Sequence[str]) -> pd.DataFrame:
    """Gene annotation table with symbols and biotypes."""
    return pd.DataFrame(
        {
            "symbol": [f"SYM{i}" for i in range(len(gene_ids))],
            "biotype": [
                "Mt_rRNA" if str(g).startswith("MT-") else "protein_coding" for g in gene_ids
            ],
        },
        index=pd.Index([str(g) for g in gene_ids], name="gene_id"),
    )


def make_embedding(scores: np.ndarray) -> Embedding:
    """Wrap raw coordinates as a PCA embedding."""
    scores = np.asarray(scores, dtype=np.float64)
    n_cells, k = scores.shape
    return Embedding(
        scores=scores,
        components=np.eye(k),
        explained_variance=np.ones(k),
        explained_variance_ratio=np.full(k, 1.0 / k),
        singular_values=np.ones(k),
        cell_ids=pd.Index([f"c{i}" for i in range(n_cells)], name="cell_id"),
        feature_ids=pd.Index([f"f{j}" for j in range(k)]),
    )


def make_scaled(X: np.ndarray) -> ScaledMatrix:
    """Wrap a dense array as a scaled feature matrix."""
    X = np.asarray(X, dtype=np.float64)
    n_cells, n_features = X.shape
    return ScaledMatrix(
        X=X,
        cell_ids=pd.Index([f"c{i}" for i in range(n_cells)], name="cell_id"),
        feature_ids=pd.Index([f"f{j}" for j in range(n_features)]),
        means=np.zeros(n_features),
        stds=np.ones(n_features),
        max_value=float("inf"),
    )


def make_normalized(
    X: np.ndarray,
    cell_ids: Sequence[str],
    gene_ids: Sequence[str],
) -> NormalizedMatrix:
    """Wrap a dense array of log-normalized values."""
    return NormalizedMatrix(
        X=sparse.csr_matrix(np.asarray(X, dtype=np.float64)),
        cell_ids=pd.Index([str(c) for c in cell_ids], name="cell_id"),
        gene_ids=pd.Index([str(g) for g in gene_ids], name="gene_id"),
        target_sum=1e4,
    )
