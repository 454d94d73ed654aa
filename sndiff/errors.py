"""Error taxonomy for the analysis core.

Structural errors (shape mismatches, empty selections, rank problems) are
fatal and propagate to the caller without partial output. Statistical edge
cases are not errors: they are skipped per item and recorded on the result.
"""

from __future__ import annotations


class SndiffError(Exception):
    """Base class for all analysis errors."""


class InputShapeError(SndiffError, ValueError):
    """Cell or gene identifiers disagree between matrix and metadata."""


class EmptyResultError(SndiffError, ValueError):
    """A filtering or grouping step produced zero entities."""


class RankDeficiencyError(SndiffError, ValueError):
    """Requested component count exceeds the matrix rank."""


class InsufficientFeaturesError(SndiffError, ValueError):
    """Too few genes pass the expression floor for feature selection."""


class InsufficientGenesError(SndiffError, ValueError):
    """Too few genes pass the score floor for enrichment ranking."""


class EmptyGroupError(SndiffError, ValueError):
    """A named comparison group has no cells under the active labeling."""


class CancelledError(SndiffError):
    """A long-running stage was aborted through its cancel token."""


class DisconnectedGraphWarning(UserWarning):
    """The neighbor graph has several connected components.

    Non-fatal: each component is clustered on its own and isolated cells
    become singleton clusters.
    """
