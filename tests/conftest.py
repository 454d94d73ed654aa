"""Pytest configuration and shared fixtures for sndiff tests."""

import sys
from pathlib import Path

import pytest
import numpy as np
import pandas as pd

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Import mock data generators
from tests.fixtures import (
    create_mock_counts,
    create_mock_gene_metadata,
    create_mock_gene_sets,
)

from sndiff.core.preprocessing import NormalizationConfig, Normalizer
from sndiff.pipeline import AnalysisConfig


# ============================================================================
# Mock Data Fixtures
# ============================================================================


@pytest.fixture
def mock_counts():
    """Counts and metadata: 120 cells, 60 genes, two populations, two conditions."""
    return create_mock_counts()


@pytest.fixture
def count_matrix(mock_counts):
    return mock_counts[0]


@pytest.fixture
def cell_metadata(mock_counts):
    return mock_counts[1]


@pytest.fixture
def normalized(count_matrix):
    """Log-normalized mock counts."""
    return Normalizer(NormalizationConfig()).normalize(count_matrix)


@pytest.fixture
def gene_sets():
    return create_mock_gene_sets()


@pytest.fixture
def gene_metadata(count_matrix):
    return create_mock_gene_metadata(count_matrix.gene_ids)


@pytest.fixture
def tiny_counts_frame() -> pd.DataFrame:
    """Three cells x three genes with hand-checkable QC metrics."""
    return pd.DataFrame(
        [[1, 0, 1], [0, 0, 0], [3, 2, 0]],
        index=["c0", "c1", "c2"],
        columns=["GENE_A", "GENE_B", "MT-1"],
    )


@pytest.fixture
def separated_points() -> np.ndarray:
    """Two tight pairs far apart on a line: 0, 1, 10, 11."""
    return np.array([[0.0, 0.0], [1.0, 0.0], [10.0, 0.0], [11.0, 0.0]])


@pytest.fixture
def two_blobs() -> np.ndarray:
    """Two well-separated Gaussian blobs of 20 points in 5 dimensions."""
    rng = np.random.default_rng(0)
    a = rng.normal(0.0, 1.0, size=(20, 5))
    b = rng.normal(50.0, 1.0, size=(20, 5))
    return np.vstack([a, b])


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def analysis_config() -> AnalysisConfig:
    """Configuration sized for the mock counts, layout disabled."""
    return AnalysisConfig.from_dict(
        {
            "preprocessing": {
                "qc": {
                    "min_features": 5,
                    "max_features": 1000,
                    "max_mito_fraction": 0.25,
                },
                "normalization": {"n_variable_features": 30},
            },
            "clustering": {
                "reduction": {"n_components": 10},
                "graph": {"n_neighbors": 10, "n_dims": 8},
                "clustering": {"resolution": 0.5, "random_seed": 0},
                "embedding": {"enabled": False},
            },
            "enrichment": {
                "score_floor": 0.0,
                "min_genes": 10,
                "permutation": {"n_permutations": 50, "random_seed": 7},
            },
        }
    )


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir
