"""I/O utilities for sndiff.

Provides input readers, result export and logging helpers.
"""

from .logging import get_timestamped_log_path, log_json, log_yaml
from .readers import (
    read_cell_metadata,
    read_count_csv,
    read_gene_metadata,
    read_h5ad,
)
from .export import (
    ensure_output_dir,
    export_de_table,
    export_enrichment_table,
    write_dataframe,
    write_json,
)

__all__ = [
    # Logging
    "get_timestamped_log_path",
    "log_json",
    "log_yaml",
    # Readers
    "read_cell_metadata",
    "read_count_csv",
    "read_gene_metadata",
    "read_h5ad",
    # Export
    "ensure_output_dir",
    "export_de_table",
    "export_enrichment_table",
    "write_dataframe",
    "write_json",
]
