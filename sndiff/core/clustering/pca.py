"""Principal component analysis of the scaled feature matrix."""

from dataclasses import dataclass
from typing import Optional

import logging

import numpy as np
import pandas as pd
from scipy import linalg
from sklearn.utils.extmath import randomized_svd

from ...errors import RankDeficiencyError
from ..data import freeze
from ..preprocessing.normalization import ScaledMatrix
from .config import ReductionConfig

SOLVERS = ("full", "randomized")


@dataclass(frozen=True)
class Embedding:
    """PCA scores, loadings and explained variance.

    Attributes
    ----------
    scores : np.ndarray
        Cell coordinates, shape (n_cells, k)
    components : np.ndarray
        Orthonormal loadings, shape (k, n_features), by descending variance
    explained_variance : np.ndarray
        Variance captured by each component
    explained_variance_ratio : np.ndarray
        Fraction of total variance per component (sums to <= 1)
    singular_values : np.ndarray
        Singular values of the centered matrix
    cell_ids : pd.Index
        Cell identifiers (score rows)
    feature_ids : pd.Index
        Feature identifiers (loading columns)
    """

    scores: np.ndarray
    components: np.ndarray
    explained_variance: np.ndarray
    explained_variance_ratio: np.ndarray
    singular_values: np.ndarray
    cell_ids: pd.Index
    feature_ids: pd.Index

    @property
    def n_components(self) -> int:
        return self.components.shape[0]

    def scores_frame(self) -> pd.DataFrame:
        columns = [f"PC{i + 1}" for i in range(self.n_components)]
        return pd.DataFrame(self.scores, index=self.cell_ids, columns=columns)

    def loadings_frame(self) -> pd.DataFrame:
        columns = [f"PC{i + 1}" for i in range(self.n_components)]
        return pd.DataFrame(self.components.T, index=self.feature_ids, columns=columns)


def _fix_signs(u: np.ndarray, vt: np.ndarray) -> None:
    """Make the largest-magnitude loading of each component positive (in place)."""
    max_idx = np.argmax(np.abs(vt), axis=1)
    signs = np.sign(vt[np.arange(vt.shape[0]), max_idx])
    signs[signs == 0] = 1.0
    vt *= signs[:, np.newaxis]
    u *= signs[np.newaxis, :]


class PCAReducer:
    """Truncated SVD of the centered, scaled feature matrix.

    Parameters
    ----------
    config : ReductionConfig, optional
        Reduction configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> reducer = PCAReducer(ReductionConfig(n_components=30))
    >>> embedding = reducer.reduce(scaled)
    >>> embedding.scores.shape
    (n_cells, 30)
    """

    def __init__(
        self,
        config: Optional[ReductionConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ReductionConfig()
        self.logger = logger or logging.getLogger(__name__)

    def reduce(
        self,
        scaled: ScaledMatrix,
        k: Optional[int] = None,
        solver: Optional[str] = None,
        random_seed: Optional[int] = None,
    ) -> Embedding:
        """Project cells onto the top-k principal components.

        Parameters
        ----------
        scaled : ScaledMatrix
            Scaled features
        k : int, optional
            Number of components. Uses config default if None.
        solver : str, optional
            "full" or "randomized". Uses config default if None.
        random_seed : int, optional
            Seed for the randomized solver. Uses config default if None.

        Returns
        -------
        Embedding
            Scores, orthonormal loadings and explained variance

        Raises
        ------
        RankDeficiencyError
            If k exceeds min(n_cells - 1, n_features) or the numerical rank
        """
        cfg = self.config
        k = k if k is not None else cfg.n_components
        solver = solver if solver is not None else cfg.solver
        random_seed = random_seed if random_seed is not None else cfg.random_seed

        if solver not in SOLVERS:
            raise ValueError(f"Unknown PCA solver: {solver} (expected one of {SOLVERS})")

        n_cells, n_features = scaled.X.shape
        max_k = min(n_cells - 1, n_features)
        if k < 1 or k > max_k:
            raise RankDeficiencyError(
                f"Requested {k} components but at most {max_k} are available "
                f"for a {n_cells} x {n_features} matrix"
            )

        X = np.asarray(scaled.X, dtype=np.float64)
        X = X - X.mean(axis=0)

        if solver == "full":
            u, s, vt = linalg.svd(X, full_matrices=False)
        else:
            u, s, vt = randomized_svd(
                X, n_components=k, n_iter=7, random_state=random_seed
            )

        tol = (s[0] if s.size else 0.0) * max(X.shape) * np.finfo(np.float64).eps
        rank = int(np.sum(s > tol)) if s.size and s[0] > 0 else 0
        if k > rank:
            raise RankDeficiencyError(
                f"Requested {k} components but the scaled matrix has numerical rank {rank}"
            )

        u = u[:, :k].copy()
        s_k = s[:k].copy()
        vt = vt[:k].copy()
        _fix_signs(u, vt)

        explained_variance = s_k ** 2 / (n_cells - 1)
        total_variance = float(X.var(axis=0, ddof=1).sum())
        ratio = explained_variance / total_variance

        self.logger.info(
            "PCA (%s): %d components explain %.1f%% of variance",
            solver,
            k,
            100.0 * float(ratio.sum()),
        )
        return Embedding(
            scores=freeze(u * s_k),
            components=freeze(vt),
            explained_variance=freeze(explained_variance),
            explained_variance_ratio=freeze(ratio),
            singular_values=freeze(s_k),
            cell_ids=scaled.cell_ids,
            feature_ids=scaled.feature_ids,
        )
