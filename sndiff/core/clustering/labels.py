"""Cluster labelings and condition-aware grouping."""

from dataclasses import dataclass
from typing import Dict, Union

import numpy as np
import pandas as pd

from ..data import CONDITION_COL, GroupKey, align_metadata


def relabel_by_size(membership: np.ndarray) -> np.ndarray:
    """Renumber communities 0..k-1 by descending size.

    Equal-sized communities are ordered by the position of their first
    member, so the result depends only on the partition and node order.
    """
    membership = np.asarray(membership)
    _, inverse = np.unique(membership, return_inverse=True)
    sizes = np.bincount(inverse)
    first_pos = np.full(sizes.size, membership.size, dtype=np.int64)
    np.minimum.at(first_pos, inverse, np.arange(membership.size))
    order = np.lexsort((first_pos, -sizes))
    new_ids = np.empty_like(order)
    new_ids[order] = np.arange(order.size)
    return new_ids[inverse]


@dataclass(frozen=True)
class ClusterLabeling:
    """Assignment of every cell to exactly one cluster.

    Cluster ids run from 0 (largest cluster) upward.

    Attributes
    ----------
    labels : pd.Series
        Integer cluster id indexed by cell id
    resolution : float
        Resolution used
    random_seed : int
        Seed used
    modularity : float
        Modularity of the partition
    n_levels : int
        Louvain aggregation levels used
    """

    labels: pd.Series
    resolution: float
    random_seed: int
    modularity: float
    n_levels: int

    @property
    def cell_ids(self) -> pd.Index:
        return self.labels.index

    @property
    def n_clusters(self) -> int:
        return int(self.labels.nunique())

    @property
    def cluster_ids(self):
        return sorted(int(c) for c in self.labels.unique())

    @property
    def cluster_sizes(self) -> Dict[int, int]:
        counts = self.labels.value_counts()
        return {int(c): int(counts[c]) for c in sorted(counts.index)}

    def members(self, cluster_id: int) -> pd.Index:
        """Cell ids assigned to a cluster."""
        return self.labels.index[self.labels.to_numpy() == cluster_id]

    def to_frame(self) -> pd.DataFrame:
        return self.labels.rename("cluster_id").to_frame()


def _label_series(labels: Union[ClusterLabeling, pd.Series]) -> pd.Series:
    series = labels.labels if isinstance(labels, ClusterLabeling) else labels
    return series.set_axis(series.index.astype(str))


def split_by_condition(
    labels: Union[ClusterLabeling, pd.Series],
    cell_metadata: pd.DataFrame,
    condition_col: str = CONDITION_COL,
) -> pd.Series:
    """Pair every cell's cluster id with its condition label.

    Metadata is joined by cell id, never by position.

    Parameters
    ----------
    labels : ClusterLabeling or pd.Series
        Cluster ids indexed by cell id
    cell_metadata : pd.DataFrame
        Metadata indexed by cell id with a condition column
    condition_col : str
        Name of the condition column

    Returns
    -------
    pd.Series
        GroupKey(cluster_id, condition) per cell, indexed like ``labels``
    """
    series = _label_series(labels)
    aligned = align_metadata(series.index, cell_metadata, required_cols=(condition_col,))
    conditions = aligned[condition_col].astype(str)
    keys = [
        GroupKey(int(c), cond)
        for c, cond in zip(series.to_numpy(), conditions.to_numpy())
    ]
    return pd.Series(keys, index=series.index, name="group", dtype=object)


def composition_table(
    labels: Union[ClusterLabeling, pd.Series],
    cell_metadata: pd.DataFrame,
    group_col: str = CONDITION_COL,
) -> pd.DataFrame:
    """Cell counts and fractions per cluster and metadata group.

    Returns
    -------
    pd.DataFrame
        Columns cluster_id, <group_col>, n_cells, fraction_of_group and
        fraction_of_cluster
    """
    series = _label_series(labels)
    groups = split_by_condition(series, cell_metadata, group_col)
    frame = pd.DataFrame(
        {
            "cluster_id": series.to_numpy(),
            group_col: [k.condition for k in groups],
        }
    )
    table = frame.groupby(["cluster_id", group_col]).size().rename("n_cells").reset_index()
    table["fraction_of_group"] = table["n_cells"] / table.groupby(group_col)[
        "n_cells"
    ].transform("sum")
    table["fraction_of_cluster"] = table["n_cells"] / table.groupby("cluster_id")[
        "n_cells"
    ].transform("sum")
    return table.sort_values(["cluster_id", group_col], kind="mergesort").reset_index(
        drop=True
    )
