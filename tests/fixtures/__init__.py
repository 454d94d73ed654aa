"""Test fixtures for sndiff.

Provides synthetic count generators and test utilities.
"""

from .mock_counts import (
    CONDITIONS,
    create_mock_counts,
    create_mock_gene_metadata,
    create_mock_gene_sets,
    make_embedding,
    make_normalized,
    make_scaled,
    planted_gene_ids,
)

__all__ = [
    "CONDITIONS",
    "create_mock_counts",
    "create_mock_gene_metadata",
    "create_mock_gene_sets",
    "make_embedding",
    "make_normalized",
    "make_scaled",
    "planted_gene_ids",
]
