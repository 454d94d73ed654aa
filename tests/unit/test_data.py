"""Unit tests for core data containers."""

import pytest
import numpy as np
import pandas as pd
from scipy import sparse

from sndiff.core.data import CountMatrix, GroupKey, align_metadata
from sndiff.errors import InputShapeError


class TestCountMatrix:
    """Tests for CountMatrix construction and subsetting."""

    def test_build_from_dense(self):
        """Test building from a dense array keeps identifiers."""
        matrix = CountMatrix.build([[1, 0], [0, 2], [3, 4]], ["a", "b", "c"], ["g1", "g2"])
        assert matrix.shape == (3, 2)
        assert sparse.issparse(matrix.X) and matrix.X.format == "csr"
        assert list(matrix.cell_ids) == ["a", "b", "c"]
        assert list(matrix.gene_ids) == ["g1", "g2"]

    def test_shape_mismatch(self):
        """Test identifier lengths must match the matrix."""
        with pytest.raises(InputShapeError):
            CountMatrix.build([[1, 0], [0, 2]], ["a", "b", "c"], ["g1", "g2"])

    def test_duplicate_ids(self):
        """Test duplicated cell ids are rejected."""
        with pytest.raises(InputShapeError, match="Duplicate"):
            CountMatrix.build([[1], [2]], ["a", "a"], ["g1"])

    def test_negative_counts(self):
        """Test negative counts are rejected."""
        with pytest.raises(InputShapeError, match="negative"):
            CountMatrix.build([[1, -1]], ["a"], ["g1", "g2"])

    def test_build_copies_input(self):
        """Test the matrix does not share memory with the caller's array."""
        source = sparse.csr_matrix(np.array([[1.0, 2.0]]))
        matrix = CountMatrix.build(source, ["a"], ["g1", "g2"])
        source.data[:] = 99
        assert matrix.X.toarray().tolist() == [[1.0, 2.0]]

    def test_subset_cells_by_id(self, tiny_counts_frame):
        """Test subsetting follows the requested id order."""
        matrix = CountMatrix.from_dataframe(tiny_counts_frame)
        sub = matrix.subset_cells(["c2", "c0"])
        assert list(sub.cell_ids) == ["c2", "c0"]
        assert sub.to_dataframe().loc["c2", "GENE_A"] == 3

    def test_subset_unknown_cell(self, tiny_counts_frame):
        """Test subsetting by an unknown id raises."""
        matrix = CountMatrix.from_dataframe(tiny_counts_frame)
        with pytest.raises(InputShapeError):
            matrix.subset_cells(["c9"])

    def test_subset_genes(self, tiny_counts_frame):
        """Test gene subsetting keeps all cells."""
        matrix = CountMatrix.from_dataframe(tiny_counts_frame)
        sub = matrix.subset_genes(["MT-1"])
        assert sub.shape == (3, 1)
        assert list(sub.cell_ids) == ["c0", "c1", "c2"]

    def test_anndata_roundtrip(self, count_matrix, cell_metadata):
        """Test conversion to and from AnnData."""
        adata = count_matrix.to_anndata(cell_metadata)
        assert adata.n_obs == count_matrix.n_cells
        assert "condition_label" in adata.obs.columns
        back = CountMatrix.from_anndata(adata)
        assert (back.X != count_matrix.X).nnz == 0
        assert back.gene_ids.equals(count_matrix.gene_ids)


class TestGroupKey:
    """Tests for structured group keys."""

    def test_string_forms(self):
        assert str(GroupKey(3)) == "3"
        assert str(GroupKey(3, "disease")) == "3|disease"

    def test_hashable_and_comparable(self):
        """Test keys behave as tuples."""
        keys = {GroupKey(0, "a"), GroupKey(0, "a"), GroupKey(1, "a")}
        assert len(keys) == 2
        assert GroupKey(0, "b") < GroupKey(1, "a")


class TestAlignMetadata:
    """Tests for align_metadata."""

    def test_reorders_to_matrix(self, tiny_counts_frame):
        """Test metadata rows follow the matrix row order."""
        matrix = CountMatrix.from_dataframe(tiny_counts_frame)
        meta = pd.DataFrame(
            {"condition_label": ["x", "y", "z", "w"]},
            index=["extra", "c2", "c1", "c0"],
        )
        aligned = align_metadata(matrix, meta)
        assert list(aligned.index) == ["c0", "c1", "c2"]
        assert list(aligned["condition_label"]) == ["w", "z", "y"]

    def test_missing_cells(self, tiny_counts_frame):
        """Test cells without metadata raise InputShapeError."""
        matrix = CountMatrix.from_dataframe(tiny_counts_frame)
        meta = pd.DataFrame({"condition_label": ["x"]}, index=["c0"])
        with pytest.raises(InputShapeError, match="no metadata"):
            align_metadata(matrix, meta)

    def test_missing_column(self, tiny_counts_frame):
        """Test the condition column is required by default."""
        matrix = CountMatrix.from_dataframe(tiny_counts_frame)
        meta = pd.DataFrame({"sample": ["s"] * 3}, index=["c0", "c1", "c2"])
        with pytest.raises(InputShapeError, match="missing columns"):
            align_metadata(matrix, meta)

    def test_accepts_index(self):
        """Test cell ids can be passed directly."""
        meta = pd.DataFrame({"condition_label": ["x", "y"]}, index=["a", "b"])
        aligned = align_metadata(pd.Index(["b"]), meta)
        assert list(aligned.index) == ["b"]
