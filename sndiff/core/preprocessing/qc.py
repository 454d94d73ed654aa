"""Cell-level quality control.

Computes per-cell count metrics and removes low-quality nuclei by
detected-gene bounds and mitochondrial fraction.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import logging

import numpy as np
import pandas as pd

from ...errors import EmptyResultError, InputShapeError
from ..data import CountMatrix, align_metadata, freeze
from .config import QCConfig


# Reason columns for tracking removal causes
REASON_COLUMNS = [
    "ingest_low_features",
    "low_features",
    "high_features",
    "high_mito",
]

QC_METRIC_COLUMNS = ["feature_count", "total_count", "mito_fraction"]

MitoPredicate = Callable[[str], bool]


def prefix_predicate(prefixes: Sequence[str]) -> MitoPredicate:
    """Build a mitochondrial-gene predicate from identifier prefixes."""
    prefixes = tuple(prefixes)
    return lambda gene_id: str(gene_id).startswith(prefixes)


@dataclass(frozen=True)
class QCMetrics:
    """Per-cell quality metrics, computed once and read-only.

    Attributes
    ----------
    cell_ids : pd.Index
        Cells the metrics describe
    feature_count : np.ndarray
        Number of genes with a nonzero count
    total_count : np.ndarray
        Sum of counts
    mito_fraction : np.ndarray
        Fraction of counts on mitochondrial genes (0 when total is 0)
    n_mito_genes : int
        Number of genes matched by the mitochondrial predicate
    """

    cell_ids: pd.Index
    feature_count: np.ndarray
    total_count: np.ndarray
    mito_fraction: np.ndarray
    n_mito_genes: int = 0

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "feature_count": self.feature_count,
                "total_count": self.total_count,
                "mito_fraction": self.mito_fraction,
            },
            index=self.cell_ids,
        )


@dataclass
class QCResult:
    """Result from QC filtering.

    Attributes
    ----------
    matrix : CountMatrix
        Filtered count matrix
    metadata : pd.DataFrame
        Filtered cell metadata with QC metric columns joined in
    cells_total : int
        Cells before filtering
    cells_removed : int
        Cells removed
    genes_removed : int
        Genes removed by the per-gene detection filter
    reason_counts : Dict[str, int]
        Counts per removal reason (a cell can carry several)
    removal_records : List[Dict]
        One record per removed cell
    """

    matrix: Optional[CountMatrix] = None
    metadata: Optional[pd.DataFrame] = None
    cells_total: int = 0
    cells_removed: int = 0
    genes_removed: int = 0
    reason_counts: Dict[str, int] = field(default_factory=dict)
    removal_records: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def removal_fraction(self) -> float:
        return self.cells_removed / self.cells_total if self.cells_total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        result = {
            "cells_total": self.cells_total,
            "cells_removed": self.cells_removed,
            "removal_fraction": round(self.removal_fraction, 4),
            "genes_removed": self.genes_removed,
        }
        for reason in REASON_COLUMNS:
            result[f"removed_{reason}"] = self.reason_counts.get(reason, 0)
        return result


class CellQC:
    """Cell-level quality control filter.

    Parameters
    ----------
    config : QCConfig
        QC configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> qc = CellQC(QCConfig(min_features=200, max_features=2500))
    >>> metrics = qc.compute_qc(counts)
    >>> result = qc.filter_cells(counts, cell_metadata, metrics)
    """

    def __init__(
        self,
        config: Optional[QCConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or QCConfig()
        self.logger = logger or logging.getLogger(__name__)

    def compute_qc(
        self,
        matrix: CountMatrix,
        mito_predicate: Optional[MitoPredicate] = None,
    ) -> QCMetrics:
        """Compute feature count, total count and mitochondrial fraction.

        Parameters
        ----------
        matrix : CountMatrix
            Raw counts
        mito_predicate : Callable[[str], bool], optional
            Marks mitochondrial genes. Defaults to the configured prefixes.

        Returns
        -------
        QCMetrics
            Read-only per-cell metrics
        """
        if mito_predicate is None:
            mito_predicate = prefix_predicate(self.config.mito_prefixes)

        X = matrix.X
        feature_count = np.asarray(X.getnnz(axis=1), dtype=np.int64)
        total_count = np.asarray(X.sum(axis=1)).ravel()

        mito_mask = np.fromiter(
            (bool(mito_predicate(g)) for g in matrix.gene_ids),
            dtype=bool,
            count=matrix.n_genes,
        )
        if mito_mask.any():
            mito_count = np.asarray(X[:, np.flatnonzero(mito_mask)].sum(axis=1)).ravel()
        else:
            mito_count = np.zeros(matrix.n_cells)

        mito_fraction = np.zeros(matrix.n_cells)
        nonzero = total_count > 0
        mito_fraction[nonzero] = mito_count[nonzero] / total_count[nonzero]

        self.logger.debug(
            "Computed QC metrics for %d cells (%d mitochondrial genes)",
            matrix.n_cells,
            int(mito_mask.sum()),
        )
        return QCMetrics(
            cell_ids=matrix.cell_ids,
            feature_count=freeze(feature_count),
            total_count=freeze(total_count),
            mito_fraction=freeze(mito_fraction),
            n_mito_genes=int(mito_mask.sum()),
        )

    def flag_cells(self, metrics: QCMetrics) -> pd.DataFrame:
        """Build the per-cell removal reason table.

        Parameters
        ----------
        metrics : QCMetrics
            Per-cell metrics

        Returns
        -------
        pd.DataFrame
            Boolean reason columns indexed by cell id
        """
        cfg = self.config
        reasons = pd.DataFrame(index=metrics.cell_ids)
        reasons["ingest_low_features"] = metrics.feature_count < cfg.ingest_min_features
        reasons["low_features"] = metrics.feature_count < cfg.min_features
        reasons["high_features"] = metrics.feature_count > cfg.max_features
        reasons["high_mito"] = metrics.mito_fraction >= cfg.max_mito_fraction
        return reasons

    def filter_cells(
        self,
        matrix: CountMatrix,
        cell_metadata: pd.DataFrame,
        metrics: QCMetrics,
        config: Optional[QCConfig] = None,
    ) -> QCResult:
        """Filter cells based on QC thresholds.

        Matrix rows and metadata rows are subset together; no identifier
        is altered.

        Parameters
        ----------
        matrix : CountMatrix
            Raw counts
        cell_metadata : pd.DataFrame
            Cell metadata indexed by cell id (may contain extra cells)
        metrics : QCMetrics
            Metrics from :meth:`compute_qc` for the same matrix
        config : QCConfig, optional
            Threshold override for this call

        Returns
        -------
        QCResult
            Filtering result with the retained matrix and metadata

        Raises
        ------
        InputShapeError
            If metadata does not cover the matrix cells, or the metrics were
            computed for a different set or order of cells
        EmptyResultError
            If no cell passes the thresholds
        """
        if config is not None:
            return CellQC(config, self.logger).filter_cells(matrix, cell_metadata, metrics)

        if not metrics.cell_ids.equals(matrix.cell_ids):
            raise InputShapeError(
                "QC metrics do not match the matrix cells "
                f"({len(metrics.cell_ids)} metric rows, {matrix.n_cells} matrix cells)"
            )
        metadata = align_metadata(matrix, cell_metadata, required_cols=())
        reasons = self.flag_cells(metrics)
        flagged = reasons.any(axis=1)

        result = QCResult(cells_total=matrix.n_cells)
        removed = reasons.loc[flagged]
        for cell_id, row_values in removed.iterrows():
            cell_reasons = [name for name in REASON_COLUMNS if bool(row_values[name])]
            result.removal_records.append(
                {"cell_id": cell_id, "reasons": ";".join(cell_reasons)}
            )
            for reason in cell_reasons:
                result.reason_counts[reason] = result.reason_counts.get(reason, 0) + 1

        keep_ids = reasons.index[~flagged.to_numpy()]
        if len(keep_ids) == 0:
            raise EmptyResultError(
                f"QC removed all {matrix.n_cells} cells "
                f"(reasons: {result.reason_counts})"
            )

        filtered = matrix.subset_cells(keep_ids)
        if self.config.min_cells_per_gene > 0:
            detected = np.asarray(filtered.X.getnnz(axis=0))
            keep_genes = filtered.gene_ids[detected >= self.config.min_cells_per_gene]
            result.genes_removed = filtered.n_genes - len(keep_genes)
            if len(keep_genes) == 0:
                raise EmptyResultError("Gene detection filter removed all genes")
            filtered = filtered.subset_genes(keep_genes)

        metric_frame = metrics.to_frame().loc[keep_ids]
        out_meta = metadata.loc[keep_ids].drop(
            columns=[c for c in QC_METRIC_COLUMNS if c in metadata.columns]
        )
        result.metadata = out_meta.join(metric_frame)
        result.matrix = filtered
        result.cells_removed = matrix.n_cells - len(keep_ids)

        self.logger.info(
            "QC retained %d/%d cells (%.1f%% removed), %d genes",
            len(keep_ids),
            matrix.n_cells,
            100.0 * result.removal_fraction,
            filtered.n_genes,
        )
        return result
