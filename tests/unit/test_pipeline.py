"""Unit tests for stage execution, run logging and the end-to-end pipeline."""

import json

import pytest
import numpy as np
import pandas as pd

from sndiff.errors import CancelledError, EmptyResultError, InputShapeError, RankDeficiencyError
from sndiff.pipeline import AnalysisConfig, AnalysisPipeline, PipelineLogger, StageExecutor
from sndiff.utils.cancel import CancelToken
from tests.fixtures import create_mock_counts, planted_gene_ids


# ============================================================================
# Stage executor
# ============================================================================


class TestStageExecutor:
    """Tests for StageExecutor."""

    def test_dependency_order(self):
        """Test stages run after their dependencies, ties in registration order."""
        executor = StageExecutor()
        executor.register_stage("report", lambda r: "report", depends_on=["de", "qc"])
        executor.register_stage("qc", lambda r: "qc")
        executor.register_stage("de", lambda r: r["qc"] + "+de", depends_on=["qc"])
        executor.register_stage("extra", lambda r: "extra")
        assert executor.execution_order() == ["qc", "extra", "de", "report"]

        results = executor.run()
        assert results["de"] == "qc+de"
        assert executor.completed_stages == ["qc", "extra", "de", "report"]
        assert set(executor.durations) == {"qc", "extra", "de", "report"}

    def test_disabled_stage_skips_dependents(self):
        executor = StageExecutor()
        executor.register_stage("a", lambda r: 1)
        executor.register_stage("b", lambda r: 2, depends_on=["a"], enabled=False)
        executor.register_stage("c", lambda r: 3, depends_on=["b"])
        results = executor.run()
        assert results == {"a": 1}
        assert executor.completed_stages == ["a"]

    def test_duplicate_stage(self):
        executor = StageExecutor()
        executor.register_stage("a", lambda r: 1)
        with pytest.raises(ValueError, match="already registered"):
            executor.register_stage("a", lambda r: 2)

    def test_unknown_dependency(self):
        executor = StageExecutor()
        executor.register_stage("a", lambda r: 1, depends_on=["missing"])
        with pytest.raises(ValueError, match="unknown stage"):
            executor.run()

    def test_cycle(self):
        executor = StageExecutor()
        executor.register_stage("a", lambda r: 1, depends_on=["b"])
        executor.register_stage("b", lambda r: 2, depends_on=["a"])
        with pytest.raises(ValueError, match="Circular dependency"):
            executor.execution_order()

    def test_cancel_between_stages(self):
        """Test completed results survive and later stages never start."""
        token = CancelToken()
        calls = []

        def first(results):
            calls.append("first")
            token.cancel("stop")
            return 1

        executor = StageExecutor(cancel_token=token)
        executor.register_stage("first", first)
        executor.register_stage("second", lambda r: calls.append("second"), depends_on=["first"])
        with pytest.raises(CancelledError, match="stage second"):
            executor.run()
        assert calls == ["first"]
        assert executor.completed_stages == ["first"]

    def test_error_propagates(self, tmp_path):
        plog = PipelineLogger(tmp_path, log_level="DEBUG")
        plog.setup(console=False)

        def broken(results):
            raise RuntimeError("boom")

        executor = StageExecutor(logger=plog)
        executor.register_stage("broken", broken)
        try:
            with pytest.raises(RuntimeError, match="boom"):
                executor.run()
        finally:
            plog.close()
        assert "Stage broken failed: boom" in plog.log_file.read_text()


# ============================================================================
# Pipeline logger
# ============================================================================


class TestPipelineLogger:
    """Tests for PipelineLogger."""

    @pytest.mark.parametrize(
        "seconds,expected",
        [(45.2, "45.2s"), (83, "1m 23s"), (8100, "2h 15m")],
    )
    def test_format_duration(self, seconds, expected):
        assert PipelineLogger.format_duration(seconds) == expected

    def test_log_file(self, tmp_path):
        """Test stage events reach the run log file."""
        plog = PipelineLogger(tmp_path / "logs", log_name="sndiff.test_logger")
        logger = plog.setup(console=False)
        plog.log_stage_start("qc", "Cell quality control")
        plog.log_stage_complete("qc", 3.3)
        plog.log_stage_skipped("enrichment", "disabled")
        logger.debug("not written at INFO")
        plog.close()

        assert plog.log_file.name.startswith("sndiff_")
        text = plog.log_file.read_text()
        assert "Starting stage qc: Cell quality control" in text
        assert "Stage qc completed in 3.3s" in text
        assert "[SKIP] Stage enrichment: disabled" in text
        assert "not written" not in text
        assert logger.handlers == []

    def test_console_only(self):
        plog = PipelineLogger(log_name="sndiff.test_console")
        logger = plog.setup(console=True)
        assert plog.log_file is None
        assert len(logger.handlers) == 1
        plog.close()


# ============================================================================
# End-to-end pipeline
# ============================================================================


@pytest.fixture
def disease_vs_control(analysis_config) -> AnalysisConfig:
    analysis_config.clustering.de.condition_1 = "disease"
    analysis_config.clustering.de.condition_2 = "control"
    return analysis_config


class TestAnalysisPipeline:
    """Tests for AnalysisPipeline."""

    def test_requires_complete_config(self):
        with pytest.raises(ValueError, match="Missing required configuration"):
            AnalysisPipeline(AnalysisConfig())

    def test_full_run(self, count_matrix, cell_metadata, gene_sets, disease_vs_control):
        """Test every stage output on the mock dataset."""
        run = AnalysisPipeline(disease_vs_control).run(count_matrix, cell_metadata, gene_sets)

        # QC keeps metadata aligned with the matrix
        assert list(run.qc.metadata.index) == list(run.qc.matrix.cell_ids)
        assert len(run.selection.features) == 30
        assert run.scaled.X.shape == (run.qc.matrix.n_cells, 30)

        # Every retained cell has exactly one cluster
        labels = run.clustering.labeling.labels
        assert set(labels.index) == set(run.qc.matrix.cell_ids)
        assert run.clustering.layout is None

        # Planted genes lead the condition comparison
        de = run.condition_de
        assert de.group_1 == "disease"
        top = de.to_frame().head(5)
        assert set(top["gene_id"]) == set(planted_gene_ids())
        assert (top["log2_fold_change"] > 1).all()

        assert run.cluster_de.condition_1 == "disease"
        n_clusters = run.clustering.n_clusters
        assert len(run.cluster_de.results) + len(run.cluster_de.skipped_clusters) == n_clusters

        enrichment = run.enrichment["all_cells"]
        records = {r.pathway_id: r for r in enrichment.records}
        assert records["PLANTED_RESPONSE"].enrichment_score > 0
        assert records["PLANTED_RESPONSE"].set_size == 5
        assert "TINY_SET" in enrichment.skipped
        assert set(run.durations) == {"qc", "normalize", "cluster", "de", "enrichment"}

    def test_inferred_conditions(self, count_matrix, cell_metadata, analysis_config):
        """Test sorted condition labels are used when none are configured."""
        run = AnalysisPipeline(analysis_config).run(count_matrix, cell_metadata)
        assert run.condition_de.group_1 == "control"
        assert run.condition_de.group_2 == "disease"
        assert run.enrichment == {}
        assert "enrichment" not in run.durations

    def test_ambiguous_conditions(self, count_matrix, cell_metadata, analysis_config):
        metadata = cell_metadata.copy()
        metadata.iloc[:10, metadata.columns.get_loc("condition_label")] = "treated"
        with pytest.raises(ValueError, match="exactly two values"):
            AnalysisPipeline(analysis_config).run(count_matrix, metadata)

    def test_misaligned_metadata(self, count_matrix, cell_metadata, analysis_config):
        with pytest.raises(InputShapeError):
            AnalysisPipeline(analysis_config).run(count_matrix, cell_metadata.iloc[1:])

    def test_enrichment_skipped_on_short_ranking(
        self, count_matrix, cell_metadata, gene_sets, disease_vs_control
    ):
        """Test a too-short ranked list is recorded instead of failing the run."""
        disease_vs_control.enrichment.score_floor = 100.0
        run = AnalysisPipeline(disease_vs_control).run(count_matrix, cell_metadata, gene_sets)
        assert run.enrichment == {}
        assert "all_cells" in run.enrichment_skipped

    def test_cancelled_before_start(self, count_matrix, cell_metadata, analysis_config):
        token = CancelToken()
        token.cancel()
        with pytest.raises(CancelledError):
            AnalysisPipeline(analysis_config, cancel_token=token).run(
                count_matrix, cell_metadata
            )

    def test_pipeline_logger(self, count_matrix, cell_metadata, analysis_config, tmp_path):
        plog = PipelineLogger(tmp_path / "logs")
        plog.setup(console=False)
        try:
            AnalysisPipeline(analysis_config, logger=plog).run(count_matrix, cell_metadata)
        finally:
            plog.close()
        text = plog.log_file.read_text()
        assert "Starting stage cluster" in text
        assert "[SKIP] Stage enrichment: disabled" in text
        assert "clusters:" in text

    def test_write(
        self, count_matrix, cell_metadata, gene_sets, gene_metadata, disease_vs_control,
        tmp_output_dir,
    ):
        """Test result tables, summary and configuration are written."""
        run = AnalysisPipeline(disease_vs_control).run(count_matrix, cell_metadata, gene_sets)
        written = run.write(tmp_output_dir, gene_metadata=gene_metadata)

        expected = {
            "qc_removed", "variable_features", "cells", "composition", "pca",
            "de_conditions", "de_per_cluster", "enrichment", "summary", "config",
        }
        assert set(written) == expected
        for path in written.values():
            assert path.exists()

        with open(written["summary"]) as f:
            summary = json.load(f)
        assert summary["condition_de"]["group_1"] == "disease"
        assert summary["clustering"]["n_clusters"] == run.clustering.n_clusters

        de_table = written["de_conditions"].read_text().splitlines()
        assert "symbol" in de_table[0]
        assert AnalysisConfig.from_yaml(written["config"]) == disease_vs_control

    def test_write_without_embedding(
        self, count_matrix, cell_metadata, disease_vs_control, tmp_output_dir
    ):
        """Test write_embedding=False leaves PCA scores and the layout out."""
        run = AnalysisPipeline(disease_vs_control).run(count_matrix, cell_metadata)
        cells = run.qc.matrix.cell_ids
        run.clustering.layout = pd.DataFrame(
            np.zeros((len(cells), 2)), index=cells, columns=["UMAP1", "UMAP2"]
        )
        assert "UMAP1" in run.cell_table().columns

        disease_vs_control.output.write_embedding = False
        written = run.write(tmp_output_dir)
        assert "pca" not in written
        assert not (tmp_output_dir / "pca_scores.csv").exists()
        header = written["cells"].read_text().splitlines()[0]
        assert "cluster_id" in header
        assert "UMAP1" not in header

    def test_configuration_logged(self, count_matrix, cell_metadata, analysis_config, tmp_path):
        plog = PipelineLogger(tmp_path / "logs")
        plog.setup(console=False)
        try:
            AnalysisPipeline(analysis_config, logger=plog).run(count_matrix, cell_metadata)
        finally:
            plog.close()
        text = plog.log_file.read_text()
        assert "Run configuration:" in text
        assert "n_neighbors: 10" in text


class TestEndToEndScenarios:
    """Whole-pipeline scenarios on small synthetic datasets."""

    def test_planted_genes_recovered(self, disease_vs_control):
        """Test 5 genes at 10x in one condition top the DE ranking of 100 x 50 counts."""
        counts, metadata = create_mock_counts(n_cells=100, n_genes=50, planted_fold=10.0)
        run = AnalysisPipeline(disease_vs_control).run(counts, metadata)

        assert run.clustering.n_clusters >= 2
        top = run.condition_de.to_frame().head(5)
        assert set(top["gene_id"]) == set(planted_gene_ids())
        assert (top["adjusted_p_value"] < 0.05).all()

    def test_zero_max_features(self, count_matrix, cell_metadata, analysis_config):
        analysis_config.preprocessing.qc.max_features = 0
        with pytest.raises(EmptyResultError):
            AnalysisPipeline(analysis_config).run(count_matrix, cell_metadata)

    def test_too_many_components(self, count_matrix, cell_metadata, analysis_config):
        analysis_config.clustering.reduction.n_components = count_matrix.n_cells
        with pytest.raises(RankDeficiencyError):
            AnalysisPipeline(analysis_config).run(count_matrix, cell_metadata)
