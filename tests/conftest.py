"""Pytest configuration file with fixtures shared by the QuadKit tests."""

import os

import numpy as np
import pytest

from quadkit.autodiff.jax_utils import enable_x64

__all__ = ["model_folder", "assert_psd"]


@pytest.fixture(autouse=True, scope="session")
def _limit_blas_threads():
    os.environ.setdefault("OMP_NUM_THREADS", "1")
    os.environ.setdefault("OPENBLAS_NUM_THREADS", "1")
    os.environ.setdefault("MKL_NUM_THREADS", "1")
    os.environ.setdefault("VECLIB_MAXIMUM_THREADS", "1")
    os.environ.setdefault("NUMEXPR_NUM_THREADS", "1")


@pytest.fixture(autouse=True, scope="session")
def _x64():
    """Make every test run with 64-bit JAX floats."""
    enable_x64()


@pytest.fixture
def model_folder(tmp_path):
    """Return a fresh folder for compiled model artifacts."""
    folder = tmp_path / "models"
    folder.mkdir()
    return folder


@pytest.fixture
def assert_psd():
    """Return a checker that a matrix is symmetric positive semidefinite."""

    def _check(matrix, *, sym_atol=1e-12, psd_atol=1e-12):
        a = np.asarray(matrix, dtype=float)
        assert a.ndim == 2 and a.shape[0] == a.shape[1], f"not square: {a.shape}"
        np.testing.assert_allclose(a, a.T, rtol=0.0, atol=sym_atol)
        min_eig = float(np.min(np.linalg.eigvalsh(0.5 * (a + a.T)))) if a.size else 0.0
        assert min_eig >= -psd_atol, f"min eigenvalue {min_eig:.3e} < -{psd_atol:.1e}"

    return _check
