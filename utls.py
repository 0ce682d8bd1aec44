"""Miscellaneous utilities for pdrepair."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from nearpd import frobenius_norm

if TYPE_CHECKING:
    from nearpd import RepairReport


def configure_logging(level: str | int = "INFO", *, force: bool = False) -> None:
    """Set up root logging for scripts and notebooks that call the repair code.

    The library modules only emit records, they never configure handlers.
    """
    if isinstance(level, str):
        numeric_level = logging.getLevelName(level.upper())
        if not isinstance(numeric_level, int):
            raise ValueError(f"Unknown logging level: {level}")
    else:
        numeric_level = level
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        force=force,
    )


def frobenius_distance(a: np.ndarray | pd.DataFrame, b: np.ndarray | pd.DataFrame) -> float:
    left = a.to_numpy(dtype=float) if isinstance(a, pd.DataFrame) else np.asarray(a, dtype=float)
    right = b.to_numpy(dtype=float) if isinstance(b, pd.DataFrame) else np.asarray(b, dtype=float)
    if left.shape != right.shape:
        raise ValueError("Matrices must have the same shape")
    return frobenius_norm(left - right)


def describe_repair(report: "RepairReport") -> dict[str, float | str]:
    return {
        "size": float(report.matrix.shape[0]),
        "stage": report.stage,
        "iterations": float(report.iterations),
        "min_eigenvalue": report.min_eigenvalue,
        "distance": report.distance,
    }
