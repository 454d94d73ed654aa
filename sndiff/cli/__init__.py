"""Command-line interface for sndiff.

Example Usage
-------------
    # From command line:
    sndiff --help
    sndiff run --input counts.h5ad --metadata cells.csv --config analysis.yaml --out results/
    sndiff enrich --ranked ranked.csv --gene-sets hallmark.gmt --out results/
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]
