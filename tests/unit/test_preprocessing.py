"""Unit tests for preprocessing module."""

import pytest
import numpy as np
import pandas as pd

from sndiff.core.data import CountMatrix
from sndiff.core.preprocessing import (
    CellQC,
    NormalizationConfig,
    Normalizer,
    PreprocessingConfig,
    QCConfig,
    prefix_predicate,
)
from sndiff.errors import EmptyResultError, InputShapeError, InsufficientFeaturesError


@pytest.fixture
def tiny_matrix(tiny_counts_frame) -> CountMatrix:
    return CountMatrix.from_dataframe(tiny_counts_frame)


@pytest.fixture
def tiny_metadata() -> pd.DataFrame:
    return pd.DataFrame(
        {"sample": ["s1", "s1", "s2"], "condition_label": ["control", "control", "disease"]},
        index=["c0", "c1", "c2"],
    )


class TestQCConfig:
    """Tests for QCConfig dataclass."""

    def test_default_values(self):
        """Test default QC thresholds."""
        config = QCConfig()
        assert config.min_features == 200
        assert config.max_features == 2500
        assert config.max_mito_fraction == 0.05
        assert config.mito_prefixes == ["MT-", "mt-"]

    def test_preprocessing_from_yaml(self, tmp_path):
        """Test loading a nested preprocessing section."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "preprocessing:\n"
            "  qc:\n"
            "    min_features: 50\n"
            "  normalization:\n"
            "    n_variable_features: 500\n"
        )
        config = PreprocessingConfig.from_yaml(path)
        assert config.qc.min_features == 50
        assert config.qc.max_features == 2500
        assert config.normalization.n_variable_features == 500
        assert config.to_dict()["qc"]["min_features"] == 50


class TestCellQC:
    """Tests for CellQC metrics and filtering."""

    def test_compute_qc(self, tiny_matrix):
        """Test per-cell metrics on a hand-checked matrix."""
        metrics = CellQC().compute_qc(tiny_matrix)
        assert metrics.feature_count.tolist() == [2, 0, 2]
        assert metrics.total_count.tolist() == [2.0, 0.0, 5.0]
        np.testing.assert_allclose(metrics.mito_fraction, [0.5, 0.0, 0.0])
        assert metrics.n_mito_genes == 1

    def test_metrics_are_read_only(self, tiny_matrix):
        """Test metric arrays cannot be modified."""
        metrics = CellQC().compute_qc(tiny_matrix)
        with pytest.raises(ValueError):
            metrics.total_count[0] = 1.0

    def test_custom_mito_predicate(self, tiny_matrix):
        """Test an explicit predicate overrides the configured prefixes."""
        metrics = CellQC().compute_qc(tiny_matrix, mito_predicate=prefix_predicate(["GENE_B"]))
        np.testing.assert_allclose(metrics.mito_fraction, [0.0, 0.0, 0.4])

    def test_filter_cells(self, tiny_matrix, tiny_metadata):
        """Test filtering removes the high-mito and the empty cell."""
        qc = CellQC(QCConfig(min_features=1, max_features=10, max_mito_fraction=0.4))
        result = qc.filter_cells(tiny_matrix, tiny_metadata, qc.compute_qc(tiny_matrix))

        assert list(result.matrix.cell_ids) == ["c2"]
        assert result.cells_removed == 2
        assert result.reason_counts == {
            "ingest_low_features": 1,
            "low_features": 1,
            "high_mito": 1,
        }
        removed = {r["cell_id"]: r["reasons"] for r in result.removal_records}
        assert removed == {"c0": "high_mito", "c1": "ingest_low_features;low_features"}

    def test_metadata_matches_matrix(self, count_matrix, cell_metadata):
        """Test retained metadata keys equal the retained matrix rows."""
        qc = CellQC(QCConfig(min_features=45, max_features=1000, max_mito_fraction=0.25))
        result = qc.filter_cells(count_matrix, cell_metadata, qc.compute_qc(count_matrix))
        assert result.metadata.index.equals(result.matrix.cell_ids)
        for col in ["feature_count", "total_count", "mito_fraction"]:
            assert col in result.metadata.columns
        assert result.matrix.n_genes == count_matrix.n_genes

    def test_mito_threshold_is_strict(self, tiny_matrix, tiny_metadata):
        """Test a cell exactly at the mito threshold is removed."""
        qc = CellQC(QCConfig(min_features=0, max_features=10, max_mito_fraction=0.5,
                             ingest_min_features=0))
        result = qc.filter_cells(tiny_matrix, tiny_metadata, qc.compute_qc(tiny_matrix))
        assert "c0" not in result.matrix.cell_ids
        assert "c1" in result.matrix.cell_ids

    def test_all_removed(self, tiny_matrix, tiny_metadata):
        """Test EmptyResultError when no cell survives."""
        qc = CellQC(QCConfig(min_features=0, max_features=0, max_mito_fraction=1.0))
        with pytest.raises(EmptyResultError):
            qc.filter_cells(tiny_matrix, tiny_metadata, qc.compute_qc(tiny_matrix))

    def test_metadata_missing_cells(self, tiny_matrix, tiny_metadata):
        """Test metadata must cover every matrix cell."""
        qc = CellQC(QCConfig(min_features=1, max_features=10, max_mito_fraction=1.0))
        with pytest.raises(InputShapeError):
            qc.filter_cells(tiny_matrix, tiny_metadata.drop(index="c2"),
                            qc.compute_qc(tiny_matrix))

    def test_metrics_for_other_cells(self, tiny_matrix, tiny_metadata):
        """Test metrics computed on a different cell set are rejected."""
        qc = CellQC(QCConfig(min_features=0, max_features=10, max_mito_fraction=1.0))
        subset_metrics = qc.compute_qc(tiny_matrix.subset_cells(["c0", "c1"]))
        with pytest.raises(InputShapeError, match="QC metrics do not match"):
            qc.filter_cells(tiny_matrix, tiny_metadata, subset_metrics)

    def test_metrics_in_other_order(self, tiny_matrix, tiny_metadata):
        qc = CellQC(QCConfig(min_features=0, max_features=10, max_mito_fraction=1.0))
        reordered = qc.compute_qc(tiny_matrix.subset_cells(["c2", "c1", "c0"]))
        with pytest.raises(InputShapeError):
            qc.filter_cells(tiny_matrix, tiny_metadata, reordered)

    def test_config_override(self, tiny_matrix, tiny_metadata):
        """Test a per-call config replaces the engine thresholds."""
        qc = CellQC(QCConfig(min_features=0, max_features=0))
        override = QCConfig(min_features=1, max_features=10, max_mito_fraction=1.0)
        result = qc.filter_cells(tiny_matrix, tiny_metadata, qc.compute_qc(tiny_matrix),
                                 config=override)
        assert list(result.matrix.cell_ids) == ["c0", "c2"]

    def test_min_cells_per_gene(self, tiny_matrix, tiny_metadata):
        """Test genes detected in too few retained cells are dropped."""
        qc = CellQC(QCConfig(min_features=1, max_features=10, max_mito_fraction=1.0,
                             min_cells_per_gene=2))
        result = qc.filter_cells(tiny_matrix, tiny_metadata, qc.compute_qc(tiny_matrix))
        assert list(result.matrix.gene_ids) == ["GENE_A"]
        assert result.genes_removed == 2

    def test_to_dict(self, tiny_matrix, tiny_metadata):
        qc = CellQC(QCConfig(min_features=1, max_features=10, max_mito_fraction=0.4))
        summary = qc.filter_cells(
            tiny_matrix, tiny_metadata, qc.compute_qc(tiny_matrix)
        ).to_dict()
        assert summary["cells_total"] == 3
        assert summary["removed_high_mito"] == 1
        assert summary["removed_high_features"] == 0


class TestNormalizer:
    """Tests for normalization, feature selection and scaling."""

    def test_library_size(self, count_matrix):
        """Test every cell sums to the target on the linear scale."""
        normalized = Normalizer().normalize(count_matrix, target_sum=1e4)
        linear = normalized.X.copy()
        linear.data = np.expm1(linear.data)
        np.testing.assert_allclose(np.asarray(linear.sum(axis=1)).ravel(), 1e4)
        assert normalized.cell_ids.equals(count_matrix.cell_ids)

    def test_scale_invariance(self, count_matrix):
        """Test multiplying a cell's counts does not change its profile."""
        scaled_counts = CountMatrix.build(
            count_matrix.X * 3, count_matrix.cell_ids, count_matrix.gene_ids
        )
        normalizer = Normalizer()
        a = normalizer.normalize(count_matrix).X.toarray()
        b = normalizer.normalize(scaled_counts).X.toarray()
        np.testing.assert_allclose(a, b)

    def test_empty_cell_stays_zero(self, tiny_counts_frame):
        """Test a cell without counts is left at zero."""
        normalized = Normalizer().normalize(CountMatrix.from_dataframe(tiny_counts_frame))
        assert normalized.X[1].nnz == 0

    def test_select_variable_features(self, normalized):
        """Test selection returns the requested number of unique genes."""
        selection = Normalizer().select_variable_features(normalized, n=20)
        assert len(selection.features) == 20
        assert len(set(selection.features)) == 20
        assert set(selection.features) <= set(normalized.gene_ids)
        assert int(selection.stats["highly_variable"].sum()) == 20
        for col in ["mean", "variance", "variance_expected", "variance_standardized"]:
            assert col in selection.stats.columns

    def test_variable_features_ranked(self, normalized):
        """Test features are ordered by standardized variance."""
        selection = Normalizer().select_variable_features(normalized, n=20)
        values = selection.stats.loc[selection.features, "variance_standardized"].to_numpy()
        assert np.all(np.diff(values) <= 0)

    def test_deterministic(self, normalized):
        normalizer = Normalizer()
        a = normalizer.select_variable_features(normalized, n=15).features
        b = normalizer.select_variable_features(normalized, n=15).features
        assert a == b

    def test_insufficient_features(self, normalized):
        """Test requesting more features than candidates raises."""
        with pytest.raises(InsufficientFeaturesError):
            Normalizer().select_variable_features(normalized, n=normalized.n_genes + 1)

    def test_min_mean_floor(self, normalized):
        """Test a high expression floor removes all candidates."""
        with pytest.raises(InsufficientFeaturesError):
            Normalizer().select_variable_features(normalized, n=1, min_mean=1e6)

    def test_scale(self, normalized):
        """Test scaled features have zero mean and unit variance."""
        features = list(normalized.gene_ids[:10])
        scaled = Normalizer().scale(normalized, features, max_value=1e6)
        np.testing.assert_allclose(scaled.X.mean(axis=0), 0.0, atol=1e-10)
        np.testing.assert_allclose(scaled.X.std(axis=0, ddof=1), 1.0)
        assert list(scaled.feature_ids) == features

    def test_scale_clip(self, normalized):
        """Test values are clipped to the configured magnitude."""
        scaled = Normalizer(NormalizationConfig(scale_max_value=0.5)).scale(
            normalized, list(normalized.gene_ids[:10])
        )
        assert np.abs(scaled.X).max() <= 0.5

    def test_scale_constant_feature(self, tiny_counts_frame):
        """Test a zero-variance feature is left at zero."""
        frame = tiny_counts_frame.copy()
        frame["FLAT"] = 0
        normalized = Normalizer().normalize(CountMatrix.from_dataframe(frame))
        scaled = Normalizer().scale(normalized, ["FLAT", "GENE_A"])
        assert np.all(scaled.X[:, 0] == 0)
        assert scaled.stds[0] == 0

    def test_scale_unknown_feature(self, normalized):
        with pytest.raises(InputShapeError):
            Normalizer().scale(normalized, ["NOT_A_GENE"])
