"""Input readers for count matrices and cell/gene metadata.

Matrices are read from AnnData (.h5ad) files or dense CSV tables; metadata
tables are CSV files whose first column holds the identifier.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

import pandas as pd

from ..core.data import CONDITION_COL, CountMatrix

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

GENE_BIOTYPE_COL = "biotype"


def _require_file(path: PathLike, what: str) -> Path:
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"{what} not found: {file_path}")
    return file_path


def _read_id_table(path: Path, id_column: Optional[str]) -> pd.DataFrame:
    """Read a CSV table and index it by its id column (first column by default)."""
    df = pd.read_csv(path)
    if df.empty:
        raise ValueError(f"Table {path} is empty")
    id_column = id_column or df.columns[0]
    if id_column not in df.columns:
        raise ValueError(f"Expected id column `{id_column}` in {path}")
    df[id_column] = df[id_column].astype(str)
    if df[id_column].duplicated().any():
        raise ValueError(f"Duplicate ids in column `{id_column}` of {path}")
    return df.set_index(id_column)


def read_h5ad(
    path: PathLike,
    layer: Optional[str] = None,
    obs_columns: bool = True,
) -> Tuple[CountMatrix, pd.DataFrame]:
    """Read raw counts and cell annotations from an .h5ad file.

    Parameters
    ----------
    path : PathLike
        Path to the AnnData file
    layer : str, optional
        Layer holding raw counts (``X`` if None)
    obs_columns : bool
        Return ``adata.obs`` as cell metadata (empty frame otherwise)

    Returns
    -------
    Tuple[CountMatrix, pd.DataFrame]
        Count matrix and cell metadata indexed by cell id
    """
    import anndata as ad

    h5ad_path = _require_file(path, "AnnData file")
    adata = ad.read_h5ad(h5ad_path)
    if layer and layer not in adata.layers:
        raise ValueError(
            f"Layer '{layer}' not found in {h5ad_path} (available: {list(adata.layers.keys())})"
        )
    matrix = CountMatrix.from_anndata(adata, layer=layer)
    obs = adata.obs.copy() if obs_columns else pd.DataFrame(index=adata.obs_names)
    obs.index = obs.index.astype(str)
    logger.info(
        "Loaded %d cells x %d genes from %s (layer=%s)",
        matrix.n_cells,
        matrix.n_genes,
        h5ad_path,
        layer or "X",
    )
    return matrix, obs


def read_count_csv(path: PathLike, id_column: Optional[str] = None) -> CountMatrix:
    """Read a dense cell-by-gene count table (one row per cell)."""
    csv_path = _require_file(path, "Count table")
    df = _read_id_table(csv_path, id_column)
    matrix = CountMatrix.from_dataframe(df)
    logger.info("Loaded %d cells x %d genes from %s", matrix.n_cells, matrix.n_genes, csv_path)
    return matrix


def read_cell_metadata(
    path: PathLike,
    id_column: Optional[str] = None,
    condition_col: str = CONDITION_COL,
) -> pd.DataFrame:
    """Read a cell metadata table.

    Parameters
    ----------
    path : PathLike
        Path to the CSV file
    id_column : str, optional
        Cell id column (first column if None)
    condition_col : str
        Column that must be present

    Returns
    -------
    pd.DataFrame
        Metadata indexed by cell id

    Raises
    ------
    FileNotFoundError
        If the file does not exist
    ValueError
        If the table is empty, has duplicate ids or lacks the condition column
    """
    csv_path = _require_file(path, "Cell metadata table")
    df = _read_id_table(csv_path, id_column)
    if condition_col not in df.columns:
        raise ValueError(f"Cell metadata {csv_path} has no `{condition_col}` column")
    df[condition_col] = df[condition_col].astype(str)
    df.index.name = "cell_id"
    logger.info(
        "Loaded metadata for %d cells (%s: %s)",
        len(df),
        condition_col,
        ", ".join(sorted(df[condition_col].unique())),
    )
    return df


def read_gene_metadata(path: PathLike, id_column: Optional[str] = None) -> pd.DataFrame:
    """Read a gene annotation table (e.g. with a ``biotype`` column)."""
    csv_path = _require_file(path, "Gene metadata table")
    df = _read_id_table(csv_path, id_column)
    df.index.name = "gene_id"
    if GENE_BIOTYPE_COL not in df.columns:
        logger.warning("Gene metadata %s has no `%s` column", csv_path, GENE_BIOTYPE_COL)
    return df
