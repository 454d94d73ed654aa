"""Library-size normalization, variable-feature selection and scaling.

Provides the log-normalization of raw counts, a mean-variance trend model
for ranking variable genes, and per-gene standardization of the selected
features.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

import logging

import numpy as np
import pandas as pd
from scipy import sparse
from statsmodels.nonparametric.smoothers_lowess import lowess

from ...errors import InputShapeError, InsufficientFeaturesError
from ..data import CountMatrix, freeze
from .config import NormalizationConfig


@dataclass(frozen=True)
class NormalizedMatrix:
    """Log-normalized expression, ``log1p(count / total * target_sum)``.

    Attributes
    ----------
    X : sparse.csr_matrix
        Normalized values, shape (n_cells, n_genes)
    cell_ids : pd.Index
        Cell identifiers (rows)
    gene_ids : pd.Index
        Gene identifiers (columns)
    target_sum : float
        Library size each cell was scaled to
    """

    X: sparse.csr_matrix
    cell_ids: pd.Index
    gene_ids: pd.Index
    target_sum: float

    @property
    def n_cells(self) -> int:
        return self.X.shape[0]

    @property
    def n_genes(self) -> int:
        return self.X.shape[1]

    def gene_positions(self, gene_ids: Sequence[str]) -> np.ndarray:
        positions = self.gene_ids.get_indexer(pd.Index([str(g) for g in gene_ids]))
        if (positions < 0).any():
            missing = [g for g, p in zip(gene_ids, positions) if p < 0][:5]
            raise InputShapeError(f"Genes not present in normalized matrix: {missing}")
        return positions

    def cell_positions(self, cell_ids: Sequence[str]) -> np.ndarray:
        positions = self.cell_ids.get_indexer(pd.Index([str(c) for c in cell_ids]))
        if (positions < 0).any():
            raise InputShapeError("Cells not present in normalized matrix")
        return positions


@dataclass(frozen=True)
class FeatureSelection:
    """Variable features ranked by standardized variance.

    Attributes
    ----------
    features : List[str]
        Selected gene ids, most variable first
    stats : pd.DataFrame
        Per-gene mean, variance, variance_expected, variance_standardized,
        candidate and highly_variable columns
    """

    features: List[str]
    stats: pd.DataFrame


@dataclass(frozen=True)
class ScaledMatrix:
    """Zero-centered, unit-variance expression of the selected features.

    Attributes
    ----------
    X : np.ndarray
        Scaled values, shape (n_cells, n_features), clipped to ``max_value``
    cell_ids : pd.Index
        Cell identifiers (rows)
    feature_ids : pd.Index
        Selected gene identifiers (columns)
    means : np.ndarray
        Per-feature mean before scaling
    stds : np.ndarray
        Per-feature standard deviation before scaling
    max_value : float
        Clip magnitude
    """

    X: np.ndarray
    cell_ids: pd.Index
    feature_ids: pd.Index
    means: np.ndarray
    stds: np.ndarray
    max_value: float

    @property
    def n_cells(self) -> int:
        return self.X.shape[0]

    @property
    def n_features(self) -> int:
        return self.X.shape[1]


def _column_mean_var(X: sparse.spmatrix) -> tuple:
    """Column means and unbiased variances of a sparse matrix."""
    n = X.shape[0]
    mean = np.asarray(X.mean(axis=0)).ravel()
    mean_sq = np.asarray(X.multiply(X).mean(axis=0)).ravel()
    var = mean_sq - mean ** 2
    if n > 1:
        var *= n / (n - 1)
    return mean, np.maximum(var, 0.0)


class Normalizer:
    """Count normalizer and variable-feature selector.

    Parameters
    ----------
    config : NormalizationConfig
        Normalization configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> normalizer = Normalizer(NormalizationConfig(target_sum=1e4))
    >>> normalized = normalizer.normalize(counts)
    >>> selection = normalizer.select_variable_features(normalized, 2000)
    >>> scaled = normalizer.scale(normalized, selection.features)
    """

    def __init__(
        self,
        config: Optional[NormalizationConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or NormalizationConfig()
        self.logger = logger or logging.getLogger(__name__)

    def normalize(
        self,
        matrix: CountMatrix,
        target_sum: Optional[float] = None,
    ) -> NormalizedMatrix:
        """Scale every cell to a common library size, then log1p.

        Parameters
        ----------
        matrix : CountMatrix
            Raw counts
        target_sum : float, optional
            Library size after scaling. Uses config default if None.

        Returns
        -------
        NormalizedMatrix
            Sparse log-normalized matrix with the same identifiers
        """
        target_sum = target_sum if target_sum is not None else self.config.target_sum

        totals = np.asarray(matrix.X.sum(axis=1)).ravel()
        factors = np.zeros_like(totals)
        nonzero = totals > 0
        factors[nonzero] = target_sum / totals[nonzero]

        scaled = sparse.diags(factors).dot(matrix.X).tocsr()
        scaled.data = np.log1p(scaled.data)
        scaled.eliminate_zeros()

        self.logger.info(
            "Normalized %d cells to target sum %.0f (median library size %.0f)",
            matrix.n_cells,
            target_sum,
            float(np.median(totals)) if totals.size else 0.0,
        )
        return NormalizedMatrix(
            X=scaled,
            cell_ids=matrix.cell_ids,
            gene_ids=matrix.gene_ids,
            target_sum=float(target_sum),
        )

    def select_variable_features(
        self,
        normalized: NormalizedMatrix,
        n: Optional[int] = None,
        min_mean: Optional[float] = None,
    ) -> FeatureSelection:
        """Rank genes by variance relative to a fitted mean-variance trend.

        A LOWESS curve of log10(variance) against log10(mean) gives the
        expected variance of every gene. Values are standardized with that
        expectation, clipped at sqrt(n_cells) and the variance of the
        standardized values ranks the genes.

        Parameters
        ----------
        normalized : NormalizedMatrix
            Log-normalized expression
        n : int, optional
            Number of features to return. Uses config default if None.
        min_mean : float, optional
            Minimum mean expression for a candidate gene. Uses config
            default if None.

        Returns
        -------
        FeatureSelection
            Ranked features and per-gene statistics

        Raises
        ------
        InsufficientFeaturesError
            If fewer than ``n`` genes pass the expression floor
        """
        cfg = self.config
        n = n if n is not None else cfg.n_variable_features
        min_mean = min_mean if min_mean is not None else cfg.min_mean

        X = normalized.X.tocsc()
        n_cells = X.shape[0]
        mean, var = _column_mean_var(X)
        candidate = (mean > min_mean) & (var > 0)
        n_candidates = int(candidate.sum())

        if n_candidates < n:
            raise InsufficientFeaturesError(
                f"Requested {n} variable features but only {n_candidates} genes "
                f"pass the expression floor (min_mean={min_mean})"
            )

        log_mean = np.log10(mean[candidate])
        log_var = np.log10(var[candidate])
        if n_candidates >= 3:
            fitted = lowess(
                log_var,
                log_mean,
                frac=cfg.loess_span,
                it=0,
                return_sorted=False,
            )
            # LOWESS can return NaN where a window is degenerate
            fitted = np.where(np.isfinite(fitted), fitted, log_var)
        else:
            fitted = log_var

        expected = np.full(mean.shape, np.nan)
        expected[candidate] = 10 ** fitted
        sd = np.sqrt(expected)

        # Standardized variance, computed on the sparse structure
        clip = np.sqrt(n_cells)
        cols = np.repeat(np.arange(X.shape[1]), np.diff(X.indptr))
        with np.errstate(divide="ignore", invalid="ignore"):
            z_nonzero = np.minimum((X.data - mean[cols]) / sd[cols], clip)
            z_zero = -mean / sd
        sq_sum = np.bincount(cols, weights=z_nonzero ** 2, minlength=X.shape[1])
        n_zero = n_cells - np.diff(X.indptr)
        sq_sum = sq_sum + n_zero * z_zero ** 2
        std_var = sq_sum / max(n_cells - 1, 1)
        std_var[~candidate] = np.nan

        stats = pd.DataFrame(
            {
                "mean": mean,
                "variance": var,
                "variance_expected": expected,
                "variance_standardized": std_var,
                "candidate": candidate,
            },
            index=normalized.gene_ids,
        )
        ranked = (
            stats.loc[stats["candidate"]]
            .sort_values("variance_standardized", ascending=False, kind="mergesort")
        )
        features = ranked.index[:n].tolist()
        stats["highly_variable"] = stats.index.isin(features)

        self.logger.info(
            "Selected %d variable features from %d candidate genes",
            len(features),
            n_candidates,
        )
        return FeatureSelection(features=features, stats=stats)

    def scale(
        self,
        normalized: NormalizedMatrix,
        features: Sequence[str],
        max_value: Optional[float] = None,
    ) -> ScaledMatrix:
        """Standardize the selected features to zero mean and unit variance.

        Parameters
        ----------
        normalized : NormalizedMatrix
            Log-normalized expression
        features : Sequence[str]
            Gene ids to keep, in output column order
        max_value : float, optional
            Clip magnitude. Uses config default if None.

        Returns
        -------
        ScaledMatrix
            Dense scaled matrix; zero-variance features stay at 0
        """
        max_value = max_value if max_value is not None else self.config.scale_max_value
        positions = normalized.gene_positions(features)

        values = normalized.X[:, positions].toarray()
        means = values.mean(axis=0)
        stds = values.std(axis=0, ddof=1) if values.shape[0] > 1 else np.zeros(values.shape[1])
        safe = np.where(stds > 0, stds, 1.0)

        scaled = (values - means) / safe
        if max_value is not None:
            np.clip(scaled, -max_value, max_value, out=scaled)

        self.logger.debug(
            "Scaled %d features for %d cells (clip=%s)",
            len(positions),
            values.shape[0],
            max_value,
        )
        return ScaledMatrix(
            X=freeze(scaled),
            cell_ids=normalized.cell_ids,
            feature_ids=normalized.gene_ids[positions],
            means=freeze(means),
            stds=freeze(stds),
            max_value=float(max_value) if max_value is not None else float("inf"),
        )
