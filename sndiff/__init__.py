"""sndiff: condition-differential analysis for single-nucleus expression data.

This package provides tools for:
- Per-cell quality control and filtering of count matrices
- Library-size normalization and variable-feature selection
- PCA, shared-neighbor graph construction and Louvain clustering
- Wilcoxon differential expression between condition-specific clusters
- Permutation-based gene-set enrichment on ranked fold-changes

All parameters are explicit and can be loaded from YAML configuration files.

Example usage:
    >>> from sndiff.core.data import CountMatrix
    >>> from sndiff.pipeline import AnalysisConfig, AnalysisPipeline
    >>>
    >>> counts = CountMatrix.from_anndata(adata)
    >>> pipeline = AnalysisPipeline(AnalysisConfig.from_yaml("analysis.yaml"))
    >>> run = pipeline.run(counts, cell_metadata, gene_sets=gene_sets)
    >>> run.condition_de.to_frame().head()
"""

__version__ = "0.1.0"
