"""Core data containers shared by all analysis stages.

Row and column identity always travels with a matrix: every container keeps
its ``cell_ids`` and ``gene_ids`` next to the numeric payload, and subsetting
is done by identifier rather than by position.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, NamedTuple, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import sparse

from ..errors import InputShapeError

CONDITION_COL = "condition_label"


class GroupKey(NamedTuple):
    """Structured comparison-group key.

    A cell group is identified by its cluster and, optionally, the tissue
    condition it was split on. Keys compare and hash as tuples, so they can
    be used directly as pandas group labels.
    """

    cluster_id: int
    condition: Optional[str] = None

    def __str__(self) -> str:
        if self.condition is None:
            return str(self.cluster_id)
        return f"{self.cluster_id}|{self.condition}"


def _as_index(values: Iterable[Any], name: str) -> pd.Index:
    index = pd.Index([str(v) for v in values], name=name)
    if not index.is_unique:
        dupes = index[index.duplicated()].unique().tolist()[:5]
        raise InputShapeError(f"Duplicate {name} values: {dupes}")
    return index


def freeze(array: np.ndarray) -> np.ndarray:
    """Mark a dense array read-only and return it."""
    array.flags.writeable = False
    return array


@dataclass(frozen=True)
class CountMatrix:
    """Sparse cell-by-gene integer count matrix.

    Attributes
    ----------
    X : sparse.csr_matrix
        Counts, shape (n_cells, n_genes)
    cell_ids : pd.Index
        Unique cell barcodes, one per row
    gene_ids : pd.Index
        Unique gene identifiers, one per column
    """

    X: sparse.csr_matrix
    cell_ids: pd.Index
    gene_ids: pd.Index

    @classmethod
    def build(
        cls,
        X: Any,
        cell_ids: Sequence[Any],
        gene_ids: Sequence[Any],
    ) -> "CountMatrix":
        """Validate inputs and construct a read-only count matrix.

        Raises
        ------
        InputShapeError
            If identifier lengths disagree with the matrix shape, identifiers
            are duplicated or counts are negative.
        """
        matrix = sparse.csr_matrix(X, dtype=np.float64, copy=True)
        matrix.sum_duplicates()
        matrix.eliminate_zeros()
        cells = _as_index(cell_ids, "cell_id")
        genes = _as_index(gene_ids, "gene_id")

        if matrix.shape != (len(cells), len(genes)):
            raise InputShapeError(
                f"Matrix shape {matrix.shape} does not match "
                f"{len(cells)} cell ids x {len(genes)} gene ids"
            )
        if matrix.nnz and matrix.data.min() < 0:
            raise InputShapeError("Count matrix contains negative values")

        return cls(X=matrix, cell_ids=cells, gene_ids=genes)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> "CountMatrix":
        """Build from a dense cell-by-gene DataFrame (index = cell ids)."""
        return cls.build(df.to_numpy(), df.index, df.columns)

    @classmethod
    def from_anndata(cls, adata: Any, layer: Optional[str] = None) -> "CountMatrix":
        """Build from an AnnData object, reading ``X`` or a named layer."""
        values = adata.layers[layer] if layer else adata.X
        return cls.build(values, adata.obs_names, adata.var_names)

    def to_anndata(self, obs: Optional[pd.DataFrame] = None) -> Any:
        """Convert to AnnData for scanpy-based tools."""
        import anndata as ad

        obs_df = obs.reindex(self.cell_ids) if obs is not None else pd.DataFrame(index=self.cell_ids)
        return ad.AnnData(
            X=self.X.copy(),
            obs=obs_df,
            var=pd.DataFrame(index=self.gene_ids),
        )

    @property
    def n_cells(self) -> int:
        return self.X.shape[0]

    @property
    def n_genes(self) -> int:
        return self.X.shape[1]

    @property
    def shape(self) -> tuple:
        return self.X.shape

    def subset_cells(self, cell_ids: Iterable[Any]) -> "CountMatrix":
        """Keep the given cells, in the order given."""
        positions = self.cell_ids.get_indexer(pd.Index([str(c) for c in cell_ids]))
        if (positions < 0).any():
            raise InputShapeError("Requested cells are not present in the matrix")
        return CountMatrix.build(self.X[positions], self.cell_ids[positions], self.gene_ids)

    def subset_genes(self, gene_ids: Iterable[Any]) -> "CountMatrix":
        """Keep the given genes, in the order given."""
        positions = self.gene_ids.get_indexer(pd.Index([str(g) for g in gene_ids]))
        if (positions < 0).any():
            raise InputShapeError("Requested genes are not present in the matrix")
        return CountMatrix.build(self.X[:, positions], self.cell_ids, self.gene_ids[positions])

    def to_dataframe(self) -> pd.DataFrame:
        """Dense view, intended for small matrices and tests."""
        return pd.DataFrame(self.X.toarray(), index=self.cell_ids, columns=self.gene_ids)


def align_metadata(
    matrix: Any,
    metadata: pd.DataFrame,
    required_cols: Sequence[str] = (CONDITION_COL,),
) -> pd.DataFrame:
    """Return metadata rows matching the matrix rows, in matrix order.

    The metadata may describe more cells than the matrix holds (for example
    before QC), but every matrix cell must be present.

    Parameters
    ----------
    matrix : CountMatrix, NormalizedMatrix or pd.Index
        Any container with a ``cell_ids`` index, or the cell ids themselves
    metadata : pd.DataFrame
        Cell metadata indexed by cell id
    required_cols : Sequence[str]
        Columns that must be present

    Returns
    -------
    pd.DataFrame
        Metadata restricted and ordered to ``matrix.cell_ids``

    Raises
    ------
    InputShapeError
        If cells are missing from the metadata or required columns are absent
    """
    cell_ids = matrix if isinstance(matrix, pd.Index) else matrix.cell_ids
    missing_cols = [c for c in required_cols if c not in metadata.columns]
    if missing_cols:
        raise InputShapeError(f"Cell metadata missing columns: {missing_cols}")

    meta_index = pd.Index(metadata.index.astype(str), name="cell_id")
    if not meta_index.is_unique:
        raise InputShapeError("Cell metadata index contains duplicate cell ids")

    missing = cell_ids.difference(meta_index)
    if len(missing) > 0:
        raise InputShapeError(
            f"{len(missing)} matrix cells have no metadata row "
            f"(e.g. {missing[:3].tolist()})"
        )

    aligned = metadata.copy()
    aligned.index = meta_index
    return aligned.loc[cell_ids]
