"""End-to-end analysis run.

Stages run strictly downstream: QC → normalization → clustering → DE →
enrichment. Each stage consumes the result of the previous one and none
feeds back.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
import logging

import pandas as pd

from ..core.clustering import (
    ClusteringEngine,
    ClusteringResult,
    ConditionDEResult,
    DEResult,
    DERunner,
    composition_table,
)
from ..core.data import CountMatrix, align_metadata
from ..core.enrichment import EnrichmentEngine, EnrichmentRun
from ..core.preprocessing import (
    CellQC,
    FeatureSelection,
    NormalizedMatrix,
    Normalizer,
    QCResult,
    ScaledMatrix,
)
from ..errors import InsufficientGenesError
from ..io.export import (
    ensure_output_dir,
    export_de_table,
    export_enrichment_table,
    write_dataframe,
    write_json,
)
from ..io.logging import log_yaml
from ..utils.cancel import CancelToken
from .config import AnalysisConfig
from .executor import StageExecutor
from .logger import PipelineLogger

GLOBAL_COMPARISON = "all_cells"


@dataclass
class AnalysisRun:
    """All intermediate and final entities of one run.

    Attributes
    ----------
    config : AnalysisConfig
        Configuration used
    qc : QCResult
        QC filtering result
    normalized : NormalizedMatrix
        Log-normalized expression of retained cells
    selection : FeatureSelection
        Variable features
    scaled : ScaledMatrix
        Scaled variable features
    clustering : ClusteringResult
        Embedding, graph, labels and layout
    condition_de : DEResult
        condition_1 vs condition_2 over all cells
    cluster_de : ConditionDEResult
        condition_1 vs condition_2 within every cluster
    enrichment : Dict[str, EnrichmentRun]
        Enrichment per comparison ("all_cells" or "cluster_<id>")
    enrichment_skipped : Dict[str, str]
        Comparisons whose ranked list was too short
    durations : Dict[str, float]
        Seconds per stage
    """

    config: AnalysisConfig
    qc: Optional[QCResult] = None
    normalized: Optional[NormalizedMatrix] = None
    selection: Optional[FeatureSelection] = None
    scaled: Optional[ScaledMatrix] = None
    clustering: Optional[ClusteringResult] = None
    condition_de: Optional[DEResult] = None
    cluster_de: Optional[ConditionDEResult] = None
    enrichment: Dict[str, EnrichmentRun] = field(default_factory=dict)
    enrichment_skipped: Dict[str, str] = field(default_factory=dict)
    durations: Dict[str, float] = field(default_factory=dict)

    def cell_table(self, include_layout: bool = True) -> pd.DataFrame:
        """Retained cell metadata with cluster ids and, optionally, layout coordinates."""
        table = self.qc.metadata.copy()
        table["cluster_id"] = self.clustering.labeling.labels.reindex(table.index)
        if include_layout and self.clustering.layout is not None:
            table = table.join(self.clustering.layout)
        return table

    def enrichment_frame(self) -> pd.DataFrame:
        """Enrichment records of all comparisons stacked with a comparison column."""
        frames = []
        for name, run in self.enrichment.items():
            frame = run.to_frame()
            frame.insert(0, "comparison", name)
            frames.append(frame)
        if not frames:
            return pd.DataFrame()
        return pd.concat(frames, ignore_index=True)

    def summary(self) -> Dict[str, Any]:
        """Flat run summary for logging and serialization."""
        summary: Dict[str, Any] = {}
        if self.qc is not None:
            summary["qc"] = self.qc.to_dict()
        if self.selection is not None:
            summary["n_variable_features"] = len(self.selection.features)
        if self.clustering is not None:
            summary["clustering"] = self.clustering.to_dict()
        if self.condition_de is not None:
            summary["condition_de"] = self.condition_de.to_dict()
        if self.cluster_de is not None:
            summary["cluster_de"] = {
                "n_clusters_compared": len(self.cluster_de.results),
                "skipped_clusters": {
                    str(k): v for k, v in self.cluster_de.skipped_clusters.items()
                },
            }
        if self.enrichment or self.enrichment_skipped:
            summary["enrichment"] = {
                name: run.to_dict() for name, run in self.enrichment.items()
            }
            summary["enrichment_skipped"] = dict(self.enrichment_skipped)
        summary["durations"] = {k: round(v, 3) for k, v in self.durations.items()}
        return summary

    def write(
        self,
        output_dir: Union[str, Path],
        gene_metadata: Optional[pd.DataFrame] = None,
    ) -> Dict[str, Path]:
        """Write result tables, the run summary and the configuration.

        Returns
        -------
        Dict[str, Path]
            Written files by name
        """
        out = ensure_output_dir(output_dir)
        written: Dict[str, Path] = {}

        if self.qc is not None:
            removed = pd.DataFrame(self.qc.removal_records, columns=["cell_id", "reasons"])
            written["qc_removed"] = write_dataframe(removed, out / "qc_removed_cells.csv")
        if self.selection is not None:
            written["variable_features"] = write_dataframe(
                self.selection.stats, out / "variable_features.csv", index=True
            )
        if self.clustering is not None:
            write_embedding = self.config.output.write_embedding
            written["cells"] = write_dataframe(
                self.cell_table(include_layout=write_embedding), out / "cells.csv", index=True
            )
            condition_col = self.config.clustering.de.condition_col
            written["composition"] = write_dataframe(
                composition_table(self.clustering.labeling, self.qc.metadata, condition_col),
                out / "cluster_composition.csv",
            )
            if write_embedding:
                written["pca"] = write_dataframe(
                    self.clustering.embedding.scores_frame(), out / "pca_scores.csv", index=True
                )
        if self.condition_de is not None:
            written["de_conditions"] = export_de_table(
                self.condition_de.to_frame(), out / "de_conditions.csv", gene_metadata
            )
        if self.cluster_de is not None:
            written["de_per_cluster"] = export_de_table(
                self.cluster_de.to_frame(), out / "de_per_cluster.csv", gene_metadata
            )
        if self.enrichment:
            written["enrichment"] = export_enrichment_table(
                self.enrichment_frame(), out / "enrichment.csv"
            )

        written["summary"] = write_json(self.summary(), out / "run_summary.json")
        written["config"] = self.config.to_yaml(out / "config_used.yaml")
        return written


class AnalysisPipeline:
    """Runs every analysis stage on one dataset.

    Parameters
    ----------
    config : AnalysisConfig
        Run configuration; required parameters must be set
    logger : PipelineLogger, optional
        Stage event logger
    cancel_token : CancelToken, optional
        Cancellation signal checked between stages and inside long loops

    Example
    -------
    >>> config = AnalysisConfig.from_yaml("analysis.yaml")
    >>> pipeline = AnalysisPipeline(config)
    >>> run = pipeline.run(counts, cell_metadata, gene_sets=read_gmt("h.gmt"))
    >>> run.condition_de.to_frame().head()
    """

    def __init__(
        self,
        config: AnalysisConfig,
        logger: Optional[PipelineLogger] = None,
        cancel_token: Optional[CancelToken] = None,
    ):
        config.validate()
        self.config = config
        self.pipeline_logger = logger
        self.logger = logger.logger if logger is not None else logging.getLogger(__name__)
        self.cancel_token = cancel_token

    def _resolve_conditions(self, metadata: pd.DataFrame) -> List[str]:
        de_cfg = self.config.clustering.de
        if de_cfg.condition_1 is not None and de_cfg.condition_2 is not None:
            return [str(de_cfg.condition_1), str(de_cfg.condition_2)]
        labels = sorted(metadata[de_cfg.condition_col].astype(str).unique())
        if len(labels) != 2:
            raise ValueError(
                f"Expected exactly two values in `{de_cfg.condition_col}` "
                f"(found {labels}); set clustering.de.condition_1/condition_2"
            )
        return labels

    def _enrich_all(
        self,
        comparisons: Mapping[str, DEResult],
        gene_sets: Mapping[str, Iterable[str]],
        run: AnalysisRun,
    ) -> Dict[str, EnrichmentRun]:
        engine = EnrichmentEngine(self.config.enrichment, logger=self.logger)
        results: Dict[str, EnrichmentRun] = {}
        for name, de_result in comparisons.items():
            try:
                results[name] = engine.enrich(
                    de_result.ranked_scores(), gene_sets, cancel_token=self.cancel_token
                )
            except InsufficientGenesError as e:
                self.logger.warning("Enrichment skipped for %s: %s", name, e)
                run.enrichment_skipped[name] = str(e)
        return results

    def run(
        self,
        counts: CountMatrix,
        cell_metadata: pd.DataFrame,
        gene_sets: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> AnalysisRun:
        """Run QC, normalization, clustering, DE and (optionally) enrichment.

        Parameters
        ----------
        counts : CountMatrix
            Raw counts
        cell_metadata : pd.DataFrame
            Metadata indexed by cell id with a condition column
        gene_sets : Mapping[str, Iterable[str]], optional
            Pathway definitions; enrichment is skipped if None

        Returns
        -------
        AnalysisRun
            All stage outputs
        """
        cfg = self.config
        condition_col = cfg.clustering.de.condition_col
        align_metadata(counts, cell_metadata, required_cols=(condition_col,))

        log_yaml(cfg.to_dict(), self.logger, title="Run configuration:")
        run = AnalysisRun(config=cfg)
        qc = CellQC(cfg.preprocessing.qc, logger=self.logger)
        normalizer = Normalizer(cfg.preprocessing.normalization, logger=self.logger)
        clustering = ClusteringEngine(cfg.clustering, logger=self.logger)
        de_runner = DERunner(cfg.clustering.de, logger=self.logger)

        def run_qc(results):
            run.qc = qc.filter_cells(counts, cell_metadata, qc.compute_qc(counts))
            return run.qc

        def run_normalization(results):
            run.normalized = normalizer.normalize(results["qc"].matrix)
            run.selection = normalizer.select_variable_features(run.normalized)
            run.scaled = normalizer.scale(run.normalized, run.selection.features)
            return run.scaled

        def run_clustering(results):
            run.clustering = clustering.run(results["normalize"], cancel_token=self.cancel_token)
            return run.clustering

        def run_de(results):
            metadata = run.qc.metadata
            condition_1, condition_2 = self._resolve_conditions(metadata)
            conditions = metadata[condition_col].astype(str)
            run.condition_de = de_runner.compare(
                run.normalized,
                conditions,
                condition_1,
                condition_2,
                cancel_token=self.cancel_token,
            )
            run.cluster_de = de_runner.compare_conditions_per_cluster(
                run.normalized,
                results["cluster"].labeling,
                metadata,
                condition_1=condition_1,
                condition_2=condition_2,
                cancel_token=self.cancel_token,
            )
            return run.condition_de

        def run_enrichment(results):
            comparisons: Dict[str, DEResult] = {GLOBAL_COMPARISON: run.condition_de}
            if cfg.enrichment.per_cluster:
                for cluster_id, result in sorted(run.cluster_de.results.items()):
                    comparisons[f"cluster_{cluster_id}"] = result
            run.enrichment = self._enrich_all(comparisons, gene_sets, run)
            return run.enrichment

        executor = StageExecutor(logger=self.pipeline_logger, cancel_token=self.cancel_token)
        executor.register_stage("qc", run_qc, name="Cell quality control")
        executor.register_stage(
            "normalize", run_normalization, depends_on=["qc"], name="Normalization and scaling"
        )
        executor.register_stage(
            "cluster", run_clustering, depends_on=["normalize"], name="PCA, graph and clustering"
        )
        executor.register_stage(
            "de", run_de, depends_on=["cluster"], name="Differential expression"
        )
        executor.register_stage(
            "enrichment",
            run_enrichment,
            depends_on=["de"],
            name="Gene-set enrichment",
            enabled=gene_sets is not None,
        )
        executor.run()
        run.durations = dict(executor.durations)

        if self.pipeline_logger is not None:
            self.pipeline_logger.log_summary(
                {
                    "cells retained": run.qc.matrix.n_cells,
                    "clusters": run.clustering.n_clusters,
                    "genes tested": run.condition_de.n_tested,
                    "pathways tested": sum(len(r.records) for r in run.enrichment.values()),
                }
            )
        return run
