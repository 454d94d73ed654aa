"""Command-line interface for sndiff.

Provides commands for the full condition-differential analysis and for
stand-alone gene-set enrichment of a ranked gene list.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from .. import __version__


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("sndiff")


@click.group()
@click.version_option(version=__version__, prog_name="sndiff")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """sndiff: condition-differential analysis of single-nucleus counts.

    Runs QC, normalization, clustering, differential expression between two
    conditions and ranked gene-set enrichment.

    Examples:

        # Full analysis from an AnnData file
        sndiff run --input counts.h5ad --metadata cells.csv --config analysis.yaml --out results/

        # Enrichment of a precomputed ranked list
        sndiff enrich --ranked ranked.csv --gene-sets hallmark.gmt --out results/
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Raw counts (.h5ad, or CSV with one row per cell)")
@click.option("--metadata", "-m", "metadata_path", type=click.Path(exists=True),
              help="Cell metadata CSV (defaults to .obs of the .h5ad input)")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Analysis configuration file (YAML)")
@click.option("--gene-sets", "-g", "gene_sets_path", type=click.Path(exists=True),
              help="Pathway definitions (GMT); enrichment is skipped without it")
@click.option("--gene-metadata", "gene_metadata_path", type=click.Path(exists=True),
              help="Gene annotation CSV joined onto DE tables")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--layer", help="AnnData layer holding raw counts (default: X)")
@click.option("--resolution", type=float, help="Override clustering resolution")
@click.option("--n-neighbors", type=int, help="Override neighbor count")
@click.option("--n-dims", type=int, help="Override number of PCs used for the graph")
@click.option("--no-embedding", is_flag=True, help="Skip the 2-D layout")
@click.pass_context
def run(
    ctx: click.Context,
    input_path: str,
    metadata_path: Optional[str],
    config: Optional[str],
    gene_sets_path: Optional[str],
    gene_metadata_path: Optional[str],
    output_path: str,
    layer: Optional[str],
    resolution: Optional[float],
    n_neighbors: Optional[int],
    n_dims: Optional[int],
    no_embedding: bool,
) -> None:
    """Run QC, clustering, condition DE and enrichment.

    Writes cell tables, DE tables, enrichment tables, a JSON run summary and
    the configuration used to the output directory.
    """
    logger = ctx.obj["logger"]
    verbose = ctx.obj["verbose"]

    from ..core.enrichment import read_gmt
    from ..errors import SndiffError
    from ..io import (
        log_json,
        read_cell_metadata,
        read_count_csv,
        read_gene_metadata,
        read_h5ad,
    )
    from ..pipeline import AnalysisConfig, AnalysisPipeline, PipelineLogger

    analysis_config = AnalysisConfig.from_yaml(config) if config else AnalysisConfig.default()
    clustering_cfg = analysis_config.clustering
    if resolution is not None:
        clustering_cfg.clustering.resolution = resolution
    if n_neighbors is not None:
        clustering_cfg.graph.n_neighbors = n_neighbors
    if n_dims is not None:
        clustering_cfg.graph.n_dims = n_dims
    if no_embedding:
        clustering_cfg.embedding.enabled = False

    missing = analysis_config.missing_required()
    if missing:
        click.echo(f"Error: missing required parameters: {', '.join(missing)}", err=True)
        sys.exit(1)

    condition_col = clustering_cfg.de.condition_col
    try:
        if Path(input_path).suffix == ".h5ad":
            counts, obs = read_h5ad(input_path, layer=layer)
        else:
            counts, obs = read_count_csv(input_path), None
        if metadata_path:
            cell_metadata = read_cell_metadata(metadata_path, condition_col=condition_col)
        elif obs is not None and condition_col in obs.columns:
            cell_metadata = obs
            cell_metadata[condition_col] = cell_metadata[condition_col].astype(str)
        else:
            click.echo(f"Error: no `{condition_col}` column available; pass --metadata", err=True)
            sys.exit(1)

        gene_sets = read_gmt(gene_sets_path) if gene_sets_path else None
        gene_metadata = read_gene_metadata(gene_metadata_path) if gene_metadata_path else None
    except ValueError as e:
        logger.error("Failed to read inputs: %s", e)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    output_cfg = analysis_config.output
    log_dir = output_cfg.log_dir or str(Path(output_path) / "logs")
    pipeline_logger = PipelineLogger(
        log_dir, log_level="DEBUG" if verbose else output_cfg.log_level
    )
    pipeline_logger.setup()

    try:
        result = AnalysisPipeline(analysis_config, logger=pipeline_logger).run(
            counts, cell_metadata, gene_sets=gene_sets
        )
        written = result.write(output_path, gene_metadata=gene_metadata)
    except (SndiffError, ValueError) as e:
        logger.error("Analysis failed: %s", e)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        pipeline_logger.close()

    log_json(
        Path(log_dir) / "runs.jsonl",
        {
            "input": str(input_path),
            "output": str(output_path),
            "n_cells": result.qc.matrix.n_cells,
            "n_clusters": result.clustering.n_clusters,
            "n_genes_tested": result.condition_de.n_tested,
            "files": {name: str(path) for name, path in written.items()},
        },
    )

    click.echo(f"Clusters: {result.clustering.n_clusters}")
    click.echo(f"Genes tested ({result.condition_de.group_1} vs {result.condition_de.group_2}): "
               f"{result.condition_de.n_tested}")
    for name, path in written.items():
        click.echo(f"  {name}: {path}")


@cli.command()
@click.option("--ranked", "-r", "ranked_path", required=True, type=click.Path(exists=True),
              help="CSV of gene ids and scores (e.g. DE output)")
@click.option("--gene-sets", "-g", "gene_sets_path", required=True, type=click.Path(exists=True),
              help="Pathway definitions (GMT)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Enrichment configuration file (YAML)")
@click.option("--gene-column", default="gene_id", show_default=True,
              help="Column holding gene ids")
@click.option("--score-column", default="log2_fold_change", show_default=True,
              help="Column holding ranking scores")
@click.option("--n-permutations", type=int, help="Override number of permutations")
@click.option("--seed", type=int, help="Override permutation base seed")
@click.option("--n-jobs", type=int, help="Parallel jobs for permutations")
@click.pass_context
def enrich(
    ctx: click.Context,
    ranked_path: str,
    gene_sets_path: str,
    output_path: str,
    config: Optional[str],
    gene_column: str,
    score_column: str,
    n_permutations: Optional[int],
    seed: Optional[int],
    n_jobs: Optional[int],
) -> None:
    """Score pathways on a ranked gene list with a permutation null."""
    logger = ctx.obj["logger"]

    import pandas as pd

    from ..core.enrichment import EnrichmentConfig, EnrichmentEngine, read_gmt
    from ..errors import SndiffError
    from ..io import ensure_output_dir, export_enrichment_table

    enrichment_config = (
        EnrichmentConfig.from_yaml(config) if config else EnrichmentConfig.default()
    )
    if n_permutations is not None:
        enrichment_config.permutation.n_permutations = n_permutations
    if seed is not None:
        enrichment_config.permutation.random_seed = seed
    if n_jobs is not None:
        enrichment_config.permutation.n_jobs = n_jobs

    table = pd.read_csv(ranked_path)
    for col in (gene_column, score_column):
        if col not in table.columns:
            click.echo(f"Error: column `{col}` not found in {ranked_path}", err=True)
            sys.exit(1)
    scores = pd.Series(
        table[score_column].to_numpy(dtype=float),
        index=table[gene_column].astype(str),
    )
    gene_sets = read_gmt(gene_sets_path)
    logger.info("Loaded %d scores and %d gene sets", len(scores), len(gene_sets))

    try:
        result = EnrichmentEngine(enrichment_config, logger=logger).enrich(scores, gene_sets)
    except SndiffError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    out = ensure_output_dir(output_path)
    path = export_enrichment_table(result.to_frame(), out / "enrichment.csv")
    click.echo(f"Pathways tested: {len(result.records)} (skipped: {len(result.skipped)})")
    click.echo(f"Results: {path}")


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
