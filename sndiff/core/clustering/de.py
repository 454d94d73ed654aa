"""Differential expression between groups of cells.

Genes are compared with a two-sided Wilcoxon rank-sum (Mann-Whitney U)
test on log-normalized expression. Fold-changes are computed from group
means on the linear scale with a pseudocount, and p-values are adjusted
across all tested genes.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Optional, Sequence, Union

import logging
import time

import numpy as np
import pandas as pd
from scipy import sparse
from scipy.stats import mannwhitneyu

from ...errors import EmptyGroupError
from ...utils.cancel import CancelToken, check_cancelled
from ...utils.stats import adjust_pvalues
from ..data import GroupKey
from ..preprocessing.normalization import NormalizedMatrix
from .config import DEConfig
from .labels import ClusterLabeling, split_by_condition

# Reasons a gene is excluded from testing
SKIP_NOT_EXPRESSED = "not_expressed"
SKIP_ZERO_VARIANCE = "zero_variance"
SKIP_MIN_PCT = "below_min_pct"
SKIP_LOGFC = "below_logfc_threshold"

DE_COLUMNS = [
    "gene_id",
    "log2_fold_change",
    "raw_p_value",
    "adjusted_p_value",
    "mean_1",
    "mean_2",
    "pct_1",
    "pct_2",
    "tested",
]


@dataclass(frozen=True)
class DERecord:
    """Test outcome for one gene."""

    gene_id: str
    log2_fold_change: float
    raw_p_value: float
    adjusted_p_value: float
    mean_1: float
    mean_2: float
    pct_1: float
    pct_2: float
    tested: bool = True


@dataclass
class DEResult:
    """Result from a two-group differential expression comparison.

    Attributes
    ----------
    group_1 : Hashable
        First group (positive fold-change means higher here)
    group_2 : Hashable
        Second group
    n_cells_1 : int
        Cells in the first group
    n_cells_2 : int
        Cells in the second group
    records : List[DERecord]
        One record per reported gene
    skipped : Dict[str, str]
        Excluded gene ids mapped to the reason
    correction : str
        Multiple testing correction applied
    elapsed_seconds : float
        Time taken for the comparison
    """

    group_1: Hashable
    group_2: Hashable
    n_cells_1: int = 0
    n_cells_2: int = 0
    records: List[DERecord] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)
    correction: str = "fdr_bh"
    elapsed_seconds: float = 0.0

    @property
    def n_tested(self) -> int:
        return sum(1 for r in self.records if r.tested)

    def to_frame(self) -> pd.DataFrame:
        """Records as a DataFrame, sorted by descending log2 fold-change."""
        if not self.records:
            return pd.DataFrame(columns=DE_COLUMNS)
        frame = pd.DataFrame([r.__dict__ for r in self.records], columns=DE_COLUMNS)
        return frame.sort_values(
            "log2_fold_change", ascending=False, kind="mergesort"
        ).reset_index(drop=True)

    def ranked_scores(self) -> pd.Series:
        """Fold-change of every tested gene, indexed by gene id."""
        return pd.Series(
            {r.gene_id: r.log2_fold_change for r in self.records if r.tested},
            dtype=float,
            name="log2_fold_change",
        )

    def significant(self, alpha: float = 0.05) -> pd.DataFrame:
        frame = self.to_frame()
        return frame.loc[frame["adjusted_p_value"] < alpha].reset_index(drop=True)

    def to_dict(self) -> Dict[str, Any]:
        """Summary for serialization."""
        return {
            "group_1": str(self.group_1),
            "group_2": str(self.group_2),
            "n_cells_1": self.n_cells_1,
            "n_cells_2": self.n_cells_2,
            "n_tested": self.n_tested,
            "n_skipped": len(self.skipped),
            "correction": self.correction,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


@dataclass
class ConditionDEResult:
    """Per-cluster comparisons between two conditions.

    Attributes
    ----------
    condition_1 : str
        First condition
    condition_2 : str
        Second condition
    results : Dict[int, DEResult]
        Comparison per cluster id
    skipped_clusters : Dict[int, str]
        Clusters without cells in one condition, mapped to the reason
    """

    condition_1: str
    condition_2: str
    results: Dict[int, DEResult] = field(default_factory=dict)
    skipped_clusters: Dict[int, str] = field(default_factory=dict)

    def to_frame(self) -> pd.DataFrame:
        """All per-cluster records stacked with a cluster_id column."""
        frames = []
        for cluster_id, result in sorted(self.results.items()):
            frame = result.to_frame()
            frame.insert(0, "cluster_id", cluster_id)
            frames.append(frame)
        if not frames:
            return pd.DataFrame(columns=["cluster_id"] + DE_COLUMNS)
        return pd.concat(frames, ignore_index=True)


def _expm1_means(X: sparse.csr_matrix) -> np.ndarray:
    linear = X.copy()
    linear.data = np.expm1(linear.data)
    return np.asarray(linear.mean(axis=0)).ravel()


def _column_variance(X: sparse.csr_matrix) -> np.ndarray:
    mean = np.asarray(X.mean(axis=0)).ravel()
    mean_sq = np.asarray(X.multiply(X).mean(axis=0)).ravel()
    return np.maximum(mean_sq - mean ** 2, 0.0)


def _select(labels: pd.Series, group: Hashable) -> pd.Index:
    mask = np.fromiter((v == group for v in labels.to_numpy()), dtype=bool, count=len(labels))
    return labels.index[mask]


class DERunner:
    """Differential expression test runner.

    Parameters
    ----------
    config : DEConfig, optional
        DE configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> runner = DERunner(DEConfig(correction="fdr_bh"))
    >>> result = runner.compare(normalized, labeling, 0, 1)
    >>> result.to_frame().head()
    """

    def __init__(
        self,
        config: Optional[DEConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or DEConfig()
        self.logger = logger or logging.getLogger(__name__)

    def compare(
        self,
        normalized: NormalizedMatrix,
        labels: Union[ClusterLabeling, pd.Series],
        group_1: Hashable,
        group_2: Hashable,
        correction: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> DEResult:
        """Test every gene for a difference between two groups of cells.

        Parameters
        ----------
        normalized : NormalizedMatrix
            Log-normalized expression
        labels : ClusterLabeling or pd.Series
            Group per cell, indexed by cell id. Values may be cluster ids or
            GroupKey instances.
        group_1 : Hashable
            First group
        group_2 : Hashable
            Second group
        correction : str, optional
            Multiple testing correction. Uses config default if None.
        cancel_token : CancelToken, optional
            Checked between gene batches

        Returns
        -------
        DEResult
            Per-gene fold-change and p-values; positive fold-change means
            higher expression in ``group_1``

        Raises
        ------
        EmptyGroupError
            If either group has no cells
        """
        cfg = self.config
        correction = correction if correction is not None else cfg.correction
        start = time.time()

        series = labels.labels if isinstance(labels, ClusterLabeling) else labels
        series = series.set_axis(series.index.astype(str))
        cells_1 = _select(series, group_1)
        cells_2 = _select(series, group_2)
        for group, cells in ((group_1, cells_1), (group_2, cells_2)):
            if len(cells) == 0:
                raise EmptyGroupError(f"Group {group} has no cells")

        X1 = normalized.X[normalized.cell_positions(cells_1)]
        X2 = normalized.X[normalized.cell_positions(cells_2)]
        n1, n2 = X1.shape[0], X2.shape[0]
        gene_ids = normalized.gene_ids

        mean_1 = _expm1_means(X1)
        mean_2 = _expm1_means(X2)
        lfc = np.log2(mean_1 + cfg.pseudocount) - np.log2(mean_2 + cfg.pseudocount)
        pct_1 = np.asarray(X1.getnnz(axis=0)).ravel() / n1
        pct_2 = np.asarray(X2.getnnz(axis=0)).ravel() / n2

        expressed = (pct_1 > 0) | (pct_2 > 0)
        constant = (_column_variance(X1) == 0) & (_column_variance(X2) == 0)

        skipped: Dict[str, str] = {}
        testable = np.ones(len(gene_ids), dtype=bool)
        for mask, reason in (
            (~expressed, SKIP_NOT_EXPRESSED),
            (constant, SKIP_ZERO_VARIANCE),
            (np.maximum(pct_1, pct_2) < cfg.min_pct, SKIP_MIN_PCT),
            (np.abs(lfc) < cfg.logfc_threshold, SKIP_LOGFC),
        ):
            newly = mask & testable
            for g in gene_ids[newly]:
                skipped[g] = reason
            testable &= ~mask

        tested_idx = np.flatnonzero(testable)
        raw_p = np.ones(tested_idx.size)
        chunk = max(int(cfg.gene_chunk_size), 1)
        for offset in range(0, tested_idx.size, chunk):
            check_cancelled(cancel_token, "differential expression")
            cols = tested_idx[offset:offset + chunk]
            _, p = mannwhitneyu(
                X1[:, cols].toarray(),
                X2[:, cols].toarray(),
                alternative="two-sided",
                method="asymptotic",
                use_continuity=True,
                axis=0,
            )
            raw_p[offset:offset + cols.size] = np.nan_to_num(p, nan=1.0)

        adj_p = adjust_pvalues(raw_p, method=correction) if raw_p.size else raw_p

        records = [
            DERecord(
                gene_id=gene_ids[j],
                log2_fold_change=float(lfc[j]),
                raw_p_value=float(raw_p[i]),
                adjusted_p_value=float(adj_p[i]),
                mean_1=float(mean_1[j]),
                mean_2=float(mean_2[j]),
                pct_1=float(pct_1[j]),
                pct_2=float(pct_2[j]),
            )
            for i, j in enumerate(tested_idx)
        ]
        if cfg.report_untested:
            untested = np.array([skipped.get(g) == SKIP_ZERO_VARIANCE for g in gene_ids])
            for j in np.flatnonzero(untested):
                records.append(
                    DERecord(
                        gene_id=gene_ids[j],
                        log2_fold_change=0.0,
                        raw_p_value=1.0,
                        adjusted_p_value=1.0,
                        mean_1=float(mean_1[j]),
                        mean_2=float(mean_2[j]),
                        pct_1=float(pct_1[j]),
                        pct_2=float(pct_2[j]),
                        tested=False,
                    )
                )

        elapsed = time.time() - start
        self.logger.info(
            "DE %s vs %s: %d vs %d cells, %d genes tested, %d skipped (%.1fs)",
            group_1,
            group_2,
            n1,
            n2,
            tested_idx.size,
            len(skipped),
            elapsed,
        )
        return DEResult(
            group_1=group_1,
            group_2=group_2,
            n_cells_1=n1,
            n_cells_2=n2,
            records=records,
            skipped=skipped,
            correction=correction,
            elapsed_seconds=elapsed,
        )

    def compare_conditions_per_cluster(
        self,
        normalized: NormalizedMatrix,
        labeling: ClusterLabeling,
        cell_metadata: pd.DataFrame,
        condition_1: Optional[str] = None,
        condition_2: Optional[str] = None,
        condition_col: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> ConditionDEResult:
        """Compare two conditions within every cluster.

        Clusters lacking cells from either condition are skipped and
        reported rather than failing the run.

        Parameters
        ----------
        normalized : NormalizedMatrix
            Log-normalized expression
        labeling : ClusterLabeling
            Cluster assignments
        cell_metadata : pd.DataFrame
            Metadata indexed by cell id with a condition column
        condition_1 : str, optional
            First condition. Uses config value if None.
        condition_2 : str, optional
            Second condition. Uses config value if None.
        condition_col : str, optional
            Condition column. Uses config default if None.
        cancel_token : CancelToken, optional
            Checked between clusters

        Returns
        -------
        ConditionDEResult
            DE result per cluster plus skipped clusters
        """
        cfg = self.config
        condition_1 = condition_1 if condition_1 is not None else cfg.condition_1
        condition_2 = condition_2 if condition_2 is not None else cfg.condition_2
        condition_col = condition_col if condition_col is not None else cfg.condition_col
        if condition_1 is None or condition_2 is None:
            raise ValueError("Per-cluster comparison requires two condition labels")

        groups = split_by_condition(labeling, cell_metadata, condition_col)
        present = set(groups.to_numpy())

        out = ConditionDEResult(condition_1=str(condition_1), condition_2=str(condition_2))
        for cluster_id in labeling.cluster_ids:
            check_cancelled(cancel_token, "differential expression")
            key_1 = GroupKey(cluster_id, str(condition_1))
            key_2 = GroupKey(cluster_id, str(condition_2))
            absent = [str(k.condition) for k in (key_1, key_2) if k not in present]
            if absent:
                reason = f"no cells for condition {', '.join(absent)}"
                out.skipped_clusters[cluster_id] = reason
                self.logger.warning("Skipping cluster %d: %s", cluster_id, reason)
                continue
            out.results[cluster_id] = self.compare(
                normalized, groups, key_1, key_2, cancel_token=cancel_token
            )

        self.logger.info(
            "Compared %s vs %s in %d clusters (%d skipped)",
            condition_1,
            condition_2,
            len(out.results),
            len(out.skipped_clusters),
        )
        return out


def annotate_de_results(
    de_frame: pd.DataFrame,
    gene_metadata: pd.DataFrame,
    columns: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """Join gene metadata onto DE records by gene id.

    Parameters
    ----------
    de_frame : pd.DataFrame
        Output of ``DEResult.to_frame`` or ``ConditionDEResult.to_frame``
    gene_metadata : pd.DataFrame
        Gene annotations indexed by gene id
    columns : Sequence[str], optional
        Metadata columns to add (all if None)

    Returns
    -------
    pd.DataFrame
        DE records with annotation columns; row order is preserved
    """
    meta = gene_metadata.copy()
    meta.index = meta.index.astype(str)
    if columns is not None:
        meta = meta[list(columns)]
    meta = meta.loc[~meta.index.duplicated(keep="first")]
    annotations = meta.reindex(de_frame["gene_id"].astype(str).to_numpy())
    annotations.index = de_frame.index
    overlap = [c for c in annotations.columns if c in de_frame.columns]
    return pd.concat([de_frame, annotations.drop(columns=overlap)], axis=1)
