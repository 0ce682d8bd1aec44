"""Nearest positive-definite repair for covariance-like matrices."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
from scipy import linalg

_LOGGER = logging.getLogger(__name__)

MatrixLike = np.ndarray | pd.DataFrame | Sequence[Sequence[float]]


@dataclass(frozen=True, slots=True)
class RepairOptions:
    max_iterations: int = 100

    def __post_init__(self) -> None:
        if self.max_iterations < 0:
            raise ValueError("max_iterations must be non-negative")


DEFAULT_OPTIONS = RepairOptions()


@dataclass(slots=True)
class RepairReport:
    matrix: np.ndarray
    stage: str  # "input", "projection" or "loading"
    iterations: int
    distance: float

    @property
    def repaired(self) -> bool:
        return self.stage != "input"

    @property
    def min_eigenvalue(self) -> float:
        # computed on demand, the repair itself never needs it
        return min_eigenvalue(self.matrix)


class IterationLimitExceeded(RuntimeError):
    """Diagonal loading did not reach a positive-definite matrix.

    ``matrix`` is the last candidate tried and ``min_eigenvalue`` the smallest
    eigenvalue observed for it.
    """

    def __init__(self, matrix: np.ndarray, min_eigenvalue: float, iterations: int) -> None:
        super().__init__(
            f"no positive-definite matrix after {iterations} loading iterations "
            f"(min eigenvalue {min_eigenvalue:.6g})"
        )
        self.matrix = np.array(matrix, dtype=float, copy=True)
        self.min_eigenvalue = float(min_eigenvalue)
        self.iterations = iterations


def _as_square(matrix: MatrixLike) -> np.ndarray:
    if isinstance(matrix, pd.DataFrame):
        arr = matrix.to_numpy(dtype=float)
    else:
        arr = np.asarray(matrix, dtype=float)
    if arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
        raise ValueError("Input matrix must be square")
    if arr.shape[0] == 0:
        raise ValueError("Input matrix must have at least one row")
    if not np.all(np.isfinite(arr)):
        raise ValueError("Input matrix must contain finite values")
    return arr


def is_positive_definite(matrix: MatrixLike) -> bool:
    """Exact positive-definiteness test.

    The matrix must equal its transpose bit for bit and admit a Cholesky
    factorisation. No tolerance is applied.
    """
    if isinstance(matrix, pd.DataFrame):
        arr = matrix.to_numpy(dtype=float)
    else:
        arr = np.asarray(matrix, dtype=float)
    if arr.ndim != 2 or arr.shape[0] != arr.shape[1] or arr.size == 0:
        return False
    if not np.all(np.isfinite(arr)) or not np.array_equal(arr, arr.T):
        return False
    try:
        linalg.cholesky(arr, lower=True, check_finite=False)
    except np.linalg.LinAlgError:
        return False
    return True


def min_eigenvalue(matrix: np.ndarray) -> float:
    eigvals = linalg.eigvals(matrix, check_finite=False)
    return float(np.min(eigvals.real))


def frobenius_norm(matrix: np.ndarray) -> float:
    """Frobenius norm scaled by the largest entry so squares cannot overflow.

    Returns ``inf`` only when the norm itself exceeds the float range.
    """
    scale = float(np.max(np.abs(matrix))) if matrix.size else 0.0
    if scale == 0.0 or not np.isfinite(scale):
        return scale
    with np.errstate(over="ignore"):
        return float(scale * np.linalg.norm(matrix / scale, "fro"))


def _average(left: np.ndarray, right: np.ndarray) -> np.ndarray:
    # halve before adding so entries near the float maximum stay finite
    return 0.5 * left + 0.5 * right


def symmetric_polar_factor(matrix: np.ndarray) -> np.ndarray:
    """Return ``V diag(S) V^T`` from the SVD of ``matrix``."""
    _, singular, vt = linalg.svd(matrix)
    return (vt.T * singular) @ vt


def _report(original: np.ndarray, candidate: np.ndarray, stage: str, iterations: int) -> RepairReport:
    with np.errstate(over="ignore"):
        difference = candidate - original
    return RepairReport(
        matrix=candidate,
        stage=stage,
        iterations=iterations,
        distance=frobenius_norm(difference),
    )


def nearest_pd_report(matrix: MatrixLike, options: RepairOptions | None = None) -> RepairReport:
    """Repair ``matrix`` and describe how the result was obtained.

    Follows Higham's symmetric polar construction and, if the candidate is
    still on the PSD boundary, adds ``(-mineig * k**2 + spacing) * I`` on
    pass ``k`` until the Cholesky test passes. ``spacing`` is the float
    spacing at the Frobenius norm of the untouched input.
    """
    opts = options or DEFAULT_OPTIONS
    original = _as_square(matrix)
    if is_positive_definite(original):
        return _report(original, original, "input", 0)

    n = original.shape[0]
    sym = _average(original, original.T)
    polar = symmetric_polar_factor(sym)
    half = _average(sym, polar)
    candidate = _average(half, half.T)
    if is_positive_definite(candidate):
        _LOGGER.info("Repaired %dx%d matrix by polar projection", n, n)
        return _report(original, candidate, "projection", 0)

    # fixed from the untouched input, not the evolving candidate
    spacing = float(np.spacing(frobenius_norm(original)))
    identity = np.eye(n)
    mineig = min_eigenvalue(candidate)
    for k in range(1, opts.max_iterations + 1):
        shift = -mineig * k**2 + spacing
        if not np.isfinite(shift):
            raise IterationLimitExceeded(candidate, mineig, k - 1)
        loaded = candidate + shift * identity
        if not np.all(np.isfinite(loaded)):
            raise IterationLimitExceeded(candidate, mineig, k)
        candidate = loaded
        _LOGGER.debug("Loading pass %d: mineig=%.6g shift=%.6g", k, mineig, shift)
        if is_positive_definite(candidate):
            _LOGGER.info("Repaired %dx%d matrix after %d loading passes", n, n, k)
            return _report(original, candidate, "loading", k)
        mineig = min_eigenvalue(candidate)

    raise IterationLimitExceeded(candidate, mineig, opts.max_iterations)


def nearest_pd(matrix: MatrixLike, options: RepairOptions | None = None) -> np.ndarray | pd.DataFrame:
    """Return the nearest positive-definite matrix to ``matrix``.

    Positive-definite input is returned as is. DataFrames keep their labels.
    Raises ``IterationLimitExceeded`` when diagonal loading gives up.
    """
    report = nearest_pd_report(matrix, options)
    if isinstance(matrix, pd.DataFrame):
        if not report.repaired:
            return matrix
        return pd.DataFrame(report.matrix, index=matrix.index, columns=matrix.columns)
    return report.matrix


def cholesky_pd(matrix: MatrixLike, options: RepairOptions | None = None) -> np.ndarray:
    # scipy only reads one triangle, so asymmetric input goes through the repair.
    repaired = nearest_pd_report(matrix, options).matrix
    return linalg.cholesky(repaired, lower=True, check_finite=False)
