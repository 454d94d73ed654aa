"""Core computational modules for sndiff.

This package contains the main analysis engines:
- data: count matrix and metadata containers, structured group keys
- preprocessing: QC filtering, normalization, variable features, scaling
- clustering: PCA, shared-neighbor graph, Louvain clustering, UMAP layout,
  differential expression
- enrichment: ranked gene-set enrichment with permutation significance
"""
