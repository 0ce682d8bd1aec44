"""Covariance assembly from correlation and volatility tables."""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from nearpd import RepairOptions, nearest_pd_report

_LOGGER = logging.getLogger(__name__)

FrameLike = pd.DataFrame | np.ndarray
VectorLike = pd.Series | np.ndarray


def _correlation_block(rho: FrameLike, label_column: str | None) -> tuple[np.ndarray, pd.Index | None]:
    if isinstance(rho, pd.DataFrame):
        frame = rho
        if label_column is not None:
            if label_column not in frame.columns:
                raise ValueError(f"Label column '{label_column}' not found in correlation table")
            frame = frame.drop(columns=label_column)
        labels = pd.Index([str(col) for col in frame.columns])
        values = frame.to_numpy(dtype=float)
    else:
        if label_column is not None:
            raise ValueError("label_column requires a DataFrame correlation table")
        labels = None
        values = np.asarray(rho, dtype=float)
    if values.ndim != 2 or values.shape[0] != values.shape[1]:
        raise ValueError("Correlation matrix must be square")
    return values, labels


def _volatilities(sigma: VectorLike, labels: pd.Index | None, size: int) -> np.ndarray:
    if isinstance(sigma, pd.Series):
        positional = sigma.index.equals(pd.RangeIndex(len(sigma)))
        if labels is None or positional:
            values = sigma.to_numpy(dtype=float)
        elif labels.isin(sigma.index).all():
            values = sigma.reindex(labels).to_numpy(dtype=float)
        else:
            missing = [label for label in labels if label not in sigma.index]
            raise ValueError(f"Volatilities missing for labels: {missing}")
    else:
        values = np.asarray(sigma, dtype=float)
    if values.ndim != 1 or values.shape[0] != size:
        raise ValueError("Volatility vector length must match correlation dimensions")
    if not np.all(np.isfinite(values)) or np.any(values < 0):
        raise ValueError("Volatilities must be finite and non-negative")
    return values


def covariance_from_correlation(
    rho: FrameLike,
    sigma: VectorLike,
    *,
    percent: bool = False,
    label_column: str | None = None,
) -> FrameLike:
    """Scale a correlation matrix by per-asset volatilities.

    With ``percent=True`` volatilities quoted in percent are converted to
    fractions of one first. Labelled correlation tables give a labelled
    covariance frame.
    """
    values, labels = _correlation_block(rho, label_column)
    vols = _volatilities(sigma, labels, values.shape[0])
    if percent:
        vols = vols / 100.0
    cov = values * np.outer(vols, vols)
    if labels is None:
        return cov
    return pd.DataFrame(cov, index=labels, columns=labels)


def correlation_from_covariance(cov: FrameLike) -> tuple[FrameLike, VectorLike]:
    if isinstance(cov, pd.DataFrame):
        values = cov.to_numpy(dtype=float)
    else:
        values = np.asarray(cov, dtype=float)
    if values.ndim != 2 or values.shape[0] != values.shape[1]:
        raise ValueError("Covariance matrix must be square")
    variances = np.diag(values)
    if np.any(variances <= 0):
        raise ValueError("Covariance diagonal must be strictly positive")
    vols = np.sqrt(variances)
    rho = values / np.outer(vols, vols)
    if isinstance(cov, pd.DataFrame):
        return (
            pd.DataFrame(rho, index=cov.index, columns=cov.columns),
            pd.Series(vols, index=cov.columns, name="sigma"),
        )
    return rho, vols


def repaired_covariance(
    rho: FrameLike,
    sigma: VectorLike,
    *,
    percent: bool = False,
    label_column: str | None = None,
    options: RepairOptions | None = None,
) -> FrameLike:
    """Assemble a covariance matrix and make it positive definite."""
    cov = covariance_from_correlation(rho, sigma, percent=percent, label_column=label_column)
    report = nearest_pd_report(cov, options)
    if report.repaired:
        _LOGGER.info(
            "Covariance needed repair (%s, iterations=%d, frobenius shift=%.3g)",
            report.stage,
            report.iterations,
            report.distance,
        )
    if isinstance(cov, pd.DataFrame):
        return pd.DataFrame(report.matrix, index=cov.index, columns=cov.columns)
    return report.matrix
