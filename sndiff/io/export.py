"""Tabular and JSON export of analysis results."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def ensure_output_dir(path: PathLike) -> Path:
    """Create the directory if needed and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def write_dataframe(df: pd.DataFrame, path: PathLike, *, index: bool = False) -> Path:
    """Write a DataFrame as CSV, creating the parent directory."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=index)
    logger.debug("Wrote %d rows to %s", len(df), output_path)
    return output_path


def _to_builtin(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _to_builtin(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_builtin(v) for v in value]
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return None if np.isnan(value) else float(value)
    if isinstance(value, float) and np.isnan(value):
        return None
    if isinstance(value, np.ndarray):
        return _to_builtin(value.tolist())
    if isinstance(value, Path):
        return str(value)
    return value


def write_json(record: Dict[str, Any], path: PathLike) -> Path:
    """Write a dictionary as indented JSON; numpy scalars and NaN are converted."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as handle:
        json.dump(_to_builtin(record), handle, indent=2)
        handle.write("\n")
    return output_path


def export_de_table(
    de_frame: pd.DataFrame,
    path: PathLike,
    gene_metadata: Optional[pd.DataFrame] = None,
) -> Path:
    """Write DE records sorted by descending log2 fold-change.

    Parameters
    ----------
    de_frame : pd.DataFrame
        Output of ``DEResult.to_frame`` or ``ConditionDEResult.to_frame``
    path : PathLike
        Output CSV path
    gene_metadata : pd.DataFrame, optional
        Gene annotations joined by gene id

    Returns
    -------
    Path
        The written file
    """
    from ..core.clustering.de import annotate_de_results

    frame = de_frame
    if gene_metadata is not None and not frame.empty:
        frame = annotate_de_results(frame, gene_metadata)
    sort_cols = ["log2_fold_change"]
    ascending = [False]
    if "cluster_id" in frame.columns:
        sort_cols, ascending = ["cluster_id", "log2_fold_change"], [True, False]
    frame = frame.sort_values(sort_cols, ascending=ascending, kind="mergesort")
    return write_dataframe(frame, path)


def export_enrichment_table(enrichment_frame: pd.DataFrame, path: PathLike) -> Path:
    """Write enrichment records grouped by comparison, ascending adjusted p-value."""
    frame = enrichment_frame
    sort_cols = ["adjusted_p_value", "p_value", "pathway_id"]
    if "comparison" in frame.columns:
        sort_cols = ["comparison"] + sort_cols
    frame = frame.sort_values(sort_cols, kind="mergesort")
    return write_dataframe(frame, path)
