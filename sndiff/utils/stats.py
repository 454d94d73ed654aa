"""Statistical utilities for sndiff.

Provides multiple-testing correction and empirical p-value helpers shared
by the differential expression and enrichment engines.
"""

from __future__ import annotations

from typing import Iterable, Union

import numpy as np

ArrayLike = Union[Iterable[float], np.ndarray]

CORRECTION_METHODS = ("fdr_bh", "bonferroni", "holm", "none")


def adjust_pvalues(p_values: ArrayLike, method: str = "fdr_bh") -> np.ndarray:
    """Apply multiple testing correction to p-values.

    NaN entries are ignored: they are excluded from the number of tests and
    stay NaN in the output.

    Parameters
    ----------
    p_values : ArrayLike
        Raw p-values
    method : str
        Correction method: "fdr_bh", "bonferroni", "holm", "none"

    Returns
    -------
    np.ndarray
        Adjusted p-values, same shape as the input
    """
    if method not in CORRECTION_METHODS:
        raise ValueError(
            f"Unknown correction method: {method} (expected one of {CORRECTION_METHODS})"
        )

    p = np.asarray(list(p_values) if not isinstance(p_values, np.ndarray) else p_values, dtype=float)
    original_shape = p.shape
    flat = p.ravel()
    adjusted = flat.copy()

    valid = ~np.isnan(flat)
    valid_p = flat[valid]
    n_tests = valid_p.size
    if n_tests == 0 or method == "none":
        return adjusted.reshape(original_shape)

    if method == "bonferroni":
        corrected = np.clip(valid_p * n_tests, 0, 1)

    elif method == "fdr_bh":
        sorted_idx = np.argsort(valid_p, kind="mergesort")
        sorted_p = valid_p[sorted_idx]
        ranks = np.arange(1, n_tests + 1)
        adjusted_sorted = sorted_p * n_tests / ranks
        adjusted_sorted = np.minimum.accumulate(adjusted_sorted[::-1])[::-1]
        adjusted_sorted = np.clip(adjusted_sorted, 0, 1)
        corrected = np.empty(n_tests)
        corrected[sorted_idx] = adjusted_sorted

    else:  # holm
        sorted_idx = np.argsort(valid_p, kind="mergesort")
        sorted_p = valid_p[sorted_idx]
        adjusted_sorted = sorted_p * (n_tests - np.arange(n_tests))
        adjusted_sorted = np.maximum.accumulate(adjusted_sorted)
        adjusted_sorted = np.clip(adjusted_sorted, 0, 1)
        corrected = np.empty(n_tests)
        corrected[sorted_idx] = adjusted_sorted

    adjusted[valid] = corrected
    return adjusted.reshape(original_shape)


def empirical_pvalue(observed: float, null: np.ndarray) -> float:
    """Empirical two-sided p-value against a permutation null.

    The p-value is the fraction of null values whose magnitude is at least
    the magnitude of ``observed``, taken over every permutation regardless
    of sign. It is 0 when no permutation reaches the observed magnitude.

    Parameters
    ----------
    observed : float
        Observed statistic
    null : np.ndarray
        Null distribution of the statistic

    Returns
    -------
    float
        Fraction of null values at least as extreme, in [0, 1]; NaN for an
        empty null
    """
    null = np.asarray(null, dtype=float)
    if null.size == 0:
        return float("nan")
    return float(np.mean(np.abs(null) >= abs(observed)))
