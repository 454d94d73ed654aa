"""Utility functions for sndiff.

Provides statistical helpers and cancellation support used across modules.
"""

from .cancel import CancelToken, check_cancelled
from .stats import (
    CORRECTION_METHODS,
    adjust_pvalues,
    empirical_pvalue,
)

__all__ = [
    "CancelToken",
    "check_cancelled",
    "CORRECTION_METHODS",
    "adjust_pvalues",
    "empirical_pvalue",
]
