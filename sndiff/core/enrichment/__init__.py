"""Enrichment module for ranked gene-set analysis.

Scores pathways against a ranked gene list (typically DE fold-changes)
with a weighted running-sum statistic, assesses significance with a
seeded, parallel permutation null and adjusts p-values across pathways.

Example Usage
-------------
>>> from sndiff.core.enrichment import EnrichmentEngine, EnrichmentConfig, read_gmt
>>> engine = EnrichmentEngine(EnrichmentConfig())
>>> run = engine.enrich(de_result.ranked_scores(), read_gmt("pathways.gmt"))
>>> run.to_frame().head()
"""

__version__ = "0.1.0"

# Configuration classes
from .config import EnrichmentConfig, PermutationConfig

# Engine
from .engine import (
    EnrichmentEngine,
    EnrichmentRecord,
    EnrichmentRun,
    enrich,
    rank_genes,
)

# Statistics and permutations
from .parallel import (
    enrichment_statistic,
    run_permutations,
)

# Gene sets
from .gene_sets import read_gmt

__all__ = [
    # Version
    "__version__",
    # Config
    "EnrichmentConfig",
    "PermutationConfig",
    # Engine
    "EnrichmentEngine",
    "EnrichmentRecord",
    "EnrichmentRun",
    "enrich",
    "rank_genes",
    # Statistics
    "enrichment_statistic",
    "run_permutations",
    # Gene sets
    "read_gmt",
]
