"""Ranked gene-set enrichment with permutation significance.

Genes are ranked by a real-valued score (typically the DE fold-change).
Each pathway gets a weighted running-sum enrichment score, a normalized
score relative to a permutation null, an empirical p-value and an
adjusted p-value across all tested pathways.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union
import logging
import time

import numpy as np
import pandas as pd

from ...errors import InputShapeError, InsufficientGenesError
from ...utils.cancel import CancelToken
from ...utils.stats import adjust_pvalues, empirical_pvalue
from .config import EnrichmentConfig
from .parallel import enrichment_statistic, run_permutations

# Reasons a pathway is not tested
SKIP_TOO_SMALL = "too_small"
SKIP_TOO_LARGE = "too_large"
SKIP_ALL_GENES = "covers_all_ranked_genes"

ENRICHMENT_COLUMNS = [
    "pathway_id",
    "set_size",
    "enrichment_score",
    "normalized_score",
    "p_value",
    "adjusted_p_value",
    "contributing_genes",
]


@dataclass(frozen=True)
class EnrichmentRecord:
    """Enrichment outcome for one pathway.

    Attributes
    ----------
    pathway_id : str
        Pathway name
    set_size : int
        Members present in the ranked list
    enrichment_score : float
        Signed maximum deviation of the running sum
    normalized_score : float
        Enrichment score divided by the mean same-sign null magnitude
    p_value : float
        Empirical permutation p-value
    adjusted_p_value : float
        Multiple-testing adjusted p-value
    contributing_genes : Tuple[str, ...]
        Leading-edge genes, in rank order
    """

    pathway_id: str
    set_size: int
    enrichment_score: float
    normalized_score: float
    p_value: float
    adjusted_p_value: float
    contributing_genes: Tuple[str, ...]


@dataclass
class EnrichmentRun:
    """Result of an enrichment run.

    Attributes
    ----------
    records : List[EnrichmentRecord]
        One record per tested pathway
    skipped : Dict[str, str]
        Untested pathway ids mapped to the reason
    n_ranked_genes : int
        Genes passing the score floor
    n_permutations : int
        Permutations used for the null
    correction : str
        Multiple testing correction applied
    elapsed_seconds : float
        Time taken for the run
    """

    records: List[EnrichmentRecord] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)
    n_ranked_genes: int = 0
    n_permutations: int = 0
    correction: str = "fdr_bh"
    elapsed_seconds: float = 0.0

    def to_frame(self) -> pd.DataFrame:
        """Records as a DataFrame, sorted by ascending adjusted p-value."""
        if not self.records:
            return pd.DataFrame(columns=ENRICHMENT_COLUMNS)
        frame = pd.DataFrame(
            [
                {
                    "pathway_id": r.pathway_id,
                    "set_size": r.set_size,
                    "enrichment_score": r.enrichment_score,
                    "normalized_score": r.normalized_score,
                    "p_value": r.p_value,
                    "adjusted_p_value": r.adjusted_p_value,
                    "contributing_genes": ";".join(r.contributing_genes),
                }
                for r in self.records
            ],
            columns=ENRICHMENT_COLUMNS,
        )
        return frame.sort_values(
            ["adjusted_p_value", "p_value", "pathway_id"], kind="mergesort"
        ).reset_index(drop=True)

    def to_dict(self) -> Dict[str, Any]:
        """Summary for serialization."""
        return {
            "n_tested": len(self.records),
            "n_skipped": len(self.skipped),
            "n_ranked_genes": self.n_ranked_genes,
            "n_permutations": self.n_permutations,
            "correction": self.correction,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


def _normalized_score(observed: float, null: np.ndarray) -> float:
    if observed >= 0:
        same_sign = null[null >= 0]
    else:
        same_sign = null[null < 0]
    scale = float(np.mean(np.abs(same_sign))) if same_sign.size else 0.0
    if scale == 0:
        return float("nan")
    return observed / scale


def rank_genes(
    ranked_gene_scores: Union[Mapping[str, float], pd.Series],
    score_floor: float,
) -> pd.Series:
    """Scores of genes passing the floor, sorted descending.

    Ties are broken by gene id so the ranking is reproducible.
    """
    scores = pd.Series(ranked_gene_scores, dtype=float)
    scores.index = scores.index.astype(str)
    if not scores.index.is_unique:
        raise InputShapeError("Ranked gene scores contain duplicate gene ids")
    scores = scores.dropna()
    scores = scores[scores.abs() >= score_floor]
    order = np.lexsort((scores.index.to_numpy().astype(str), -scores.to_numpy()))
    return scores.iloc[order]


class EnrichmentEngine:
    """Weighted running-sum gene-set enrichment.

    Parameters
    ----------
    config : EnrichmentConfig, optional
        Enrichment configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> engine = EnrichmentEngine(EnrichmentConfig(score_floor=1.0))
    >>> run = engine.enrich(de_result.ranked_scores(), read_gmt("hallmark.gmt"))
    >>> run.to_frame().head()
    """

    def __init__(
        self,
        config: Optional[EnrichmentConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or EnrichmentConfig()
        self.logger = logger or logging.getLogger(__name__)

    def enrich(
        self,
        ranked_gene_scores: Union[Mapping[str, float], pd.Series],
        pathway_definitions: Mapping[str, Iterable[str]],
        cancel_token: Optional[CancelToken] = None,
    ) -> EnrichmentRun:
        """Score every pathway against the ranked gene list.

        Parameters
        ----------
        ranked_gene_scores : Mapping or pd.Series
            Gene id to score
        pathway_definitions : Mapping[str, Iterable[str]]
            Pathway id to member gene ids
        cancel_token : CancelToken, optional
            Checked between permutation chunks

        Returns
        -------
        EnrichmentRun
            Records for tested pathways and reasons for skipped ones

        Raises
        ------
        InsufficientGenesError
            If fewer than ``min_genes`` genes pass the score floor
        """
        cfg = self.config
        perm = cfg.permutation
        if perm.n_permutations < 1:
            raise ValueError("Enrichment requires at least one permutation")
        start = time.time()

        ranked = rank_genes(ranked_gene_scores, cfg.score_floor)
        n_genes = len(ranked)
        if n_genes < cfg.min_genes:
            raise InsufficientGenesError(
                f"Only {n_genes} genes pass the score floor {cfg.score_floor} "
                f"(minimum {cfg.min_genes})"
            )

        gene_ids = ranked.index
        weights = np.abs(ranked.to_numpy()) ** cfg.weight

        pathway_ids: List[str] = []
        members: List[np.ndarray] = []
        skipped: Dict[str, str] = {}
        for pathway_id, genes in pathway_definitions.items():
            pathway_id = str(pathway_id)
            unique_genes = pd.Index(list(dict.fromkeys(str(g) for g in genes)))
            positions = gene_ids.get_indexer(unique_genes)
            positions = np.sort(positions[positions >= 0])
            size = positions.size
            if size < cfg.min_size:
                skipped[pathway_id] = f"{SKIP_TOO_SMALL} ({size} < {cfg.min_size})"
            elif size > cfg.max_size:
                skipped[pathway_id] = f"{SKIP_TOO_LARGE} ({size} > {cfg.max_size})"
            elif size >= n_genes:
                skipped[pathway_id] = SKIP_ALL_GENES
            else:
                pathway_ids.append(pathway_id)
                members.append(positions)

        self.logger.info(
            "Enrichment: %d ranked genes, %d pathways tested, %d skipped",
            n_genes,
            len(pathway_ids),
            len(skipped),
        )
        for pathway_id, reason in skipped.items():
            self.logger.debug("Skipped pathway %s: %s", pathway_id, reason)

        run = EnrichmentRun(
            skipped=skipped,
            n_ranked_genes=n_genes,
            n_permutations=perm.n_permutations,
            correction=cfg.correction,
        )
        if not pathway_ids:
            run.elapsed_seconds = time.time() - start
            return run

        observed = [enrichment_statistic(weights, m) for m in members]

        null = run_permutations(
            weights,
            members,
            n_permutations=perm.n_permutations,
            base_seed=perm.random_seed,
            n_jobs=perm.n_jobs,
            batch_size=perm.batch_size,
            chunk_size=perm.chunk_size,
            cancel_token=cancel_token,
        )

        p_values = np.array(
            [empirical_pvalue(es, null[:, k]) for k, (es, _) in enumerate(observed)]
        )
        adjusted = adjust_pvalues(p_values, method=cfg.correction)

        for k, pathway_id in enumerate(pathway_ids):
            es, peak = observed[k]
            hits = members[k]
            leading = hits[hits <= peak] if es >= 0 else hits[hits > peak]
            run.records.append(
                EnrichmentRecord(
                    pathway_id=pathway_id,
                    set_size=int(hits.size),
                    enrichment_score=es,
                    normalized_score=_normalized_score(es, null[:, k]),
                    p_value=float(p_values[k]),
                    adjusted_p_value=float(adjusted[k]),
                    contributing_genes=tuple(gene_ids[leading]),
                )
            )

        run.elapsed_seconds = time.time() - start
        self.logger.info(
            "Enrichment completed: %d pathways, %d with adjusted p < 0.05 (%.1fs)",
            len(run.records),
            int(np.sum(adjusted < 0.05)),
            run.elapsed_seconds,
        )
        return run


def enrich(
    ranked_gene_scores: Union[Mapping[str, float], pd.Series],
    pathway_definitions: Mapping[str, Iterable[str]],
    config: Optional[EnrichmentConfig] = None,
    cancel_token: Optional[CancelToken] = None,
) -> EnrichmentRun:
    """Convenience wrapper around ``EnrichmentEngine.enrich``."""
    return EnrichmentEngine(config).enrich(
        ranked_gene_scores, pathway_definitions, cancel_token=cancel_token
    )
