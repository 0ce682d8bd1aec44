import logging
import pathlib
import sys

import numpy as np
import pandas as pd
import pytest

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from covar import (  # noqa: E402
    correlation_from_covariance,
    covariance_from_correlation,
    repaired_covariance,
)
from nearpd import is_positive_definite  # noqa: E402

COUNTRIES = ["Australia", "Canada", "France"]


def _rho_table(values):
    frame = pd.DataFrame(values, columns=COUNTRIES)
    frame.insert(0, "country", COUNTRIES)
    return frame


def test_covariance_from_arrays():
    rho = np.array([[1.0, 0.5], [0.5, 1.0]])
    sigma = np.array([0.2, 0.1])
    cov = covariance_from_correlation(rho, sigma)
    np.testing.assert_allclose(cov, [[0.04, 0.01], [0.01, 0.01]])
    np.testing.assert_array_equal(cov, cov.T)


def test_covariance_from_labelled_table_in_percent():
    rho = _rho_table([[1.0, 0.5, 0.3], [0.5, 1.0, 0.4], [0.3, 0.4, 1.0]])
    sigma = pd.Series([16.0, 20.3, 24.8])
    cov = covariance_from_correlation(rho, sigma, percent=True, label_column="country")
    assert isinstance(cov, pd.DataFrame)
    assert list(cov.columns) == COUNTRIES
    np.testing.assert_allclose(np.diag(cov.to_numpy()), [0.0256, 0.041209, 0.061504])
    assert cov.loc["Australia", "Canada"] == pytest.approx(0.5 * 0.16 * 0.203)


def test_labelled_sigma_is_aligned_by_label():
    rho = pd.DataFrame(np.eye(2), index=["a", "b"], columns=["a", "b"])
    sigma = pd.Series({"b": 2.0, "a": 1.0})
    cov = covariance_from_correlation(rho, sigma)
    assert cov.loc["a", "a"] == pytest.approx(1.0)
    assert cov.loc["b", "b"] == pytest.approx(4.0)


@pytest.mark.parametrize(
    "rho, sigma",
    [
        (np.eye(2), np.array([0.1, 0.2, 0.3])),
        (np.ones((2, 3)), np.array([0.1, 0.2])),
        (np.eye(2), np.array([0.1, -0.2])),
        (np.eye(2), np.array([0.1, np.nan])),
    ],
)
def test_covariance_rejects_bad_input(rho, sigma):
    with pytest.raises(ValueError):
        covariance_from_correlation(rho, sigma)


def test_missing_label_column():
    rho = pd.DataFrame(np.eye(2), columns=["a", "b"])
    with pytest.raises(ValueError, match="not found"):
        covariance_from_correlation(rho, np.ones(2), label_column="country")


def test_correlation_round_trip_labels():
    cov = pd.DataFrame([[4.0, 1.0], [1.0, 1.0]], index=["x", "y"], columns=["x", "y"])
    rho, sigma = correlation_from_covariance(cov)
    assert rho.loc["x", "y"] == pytest.approx(0.5)
    assert sigma["x"] == pytest.approx(2.0)
    assert sigma.name == "sigma"


def test_correlation_requires_positive_variances():
    with pytest.raises(ValueError):
        correlation_from_covariance(np.diag([1.0, 0.0]))


def test_repaired_covariance_is_pd_and_logs(caplog):
    rho = _rho_table([[1.0, 0.9, 0.7], [0.9, 1.0, -0.4], [0.7, -0.4, 1.0]])
    sigma = pd.Series([16.0, 20.0, 25.0])
    with caplog.at_level(logging.INFO, logger="covar"):
        cov = repaired_covariance(rho, sigma, percent=True, label_column="country")
    assert isinstance(cov, pd.DataFrame)
    assert list(cov.index) == COUNTRIES
    assert is_positive_definite(cov)
    assert any("needed repair" in record.getMessage() for record in caplog.records)


def test_repaired_covariance_leaves_valid_input_alone():
    rho = np.array([[1.0, 0.2], [0.2, 1.0]])
    sigma = np.array([0.1, 0.3])
    expected = covariance_from_correlation(rho, sigma)
    np.testing.assert_array_equal(repaired_covariance(rho, sigma), expected)


def test_partially_labelled_sigma_rejected():
    rho = pd.DataFrame(np.eye(2), index=["a", "b"], columns=["a", "b"])
    sigma = pd.Series({"a": 1.0, "c": 2.0})
    with pytest.raises(ValueError, match="missing for labels"):
        covariance_from_correlation(rho, sigma)


def test_default_indexed_sigma_is_positional():
    rho = pd.DataFrame(np.eye(2), index=["a", "b"], columns=["a", "b"])
    cov = covariance_from_correlation(rho, pd.Series([1.0, 3.0]))
    assert cov.loc["b", "b"] == pytest.approx(9.0)
