"""Unit tests for quadkit.autodiff.jax_utils module."""

from __future__ import annotations

import jax
import jax.numpy as jnp
import pytest

from quadkit.autodiff.jax_utils import (
    enable_x64,
    select_jacobian_transform,
    to_jax_vector,
)
from quadkit.exceptions import TapeConstructionError


def test_enable_x64_gives_float64_arrays() -> None:
    """Tests that enable_x64 makes jnp default to float64."""
    enable_x64()
    assert jnp.asarray(1.0).dtype == jnp.float64


def test_to_jax_vector_returns_1d_array() -> None:
    """Tests that to_jax_vector accepts 1D outputs, including lists."""
    out = to_jax_vector([1.0, 2.0], where="test")
    assert out.shape == (2,)
    assert out.dtype == jnp.float64


def test_to_jax_vector_accepts_empty_vector() -> None:
    """Tests that zero-length residual outputs are legitimate."""
    assert to_jax_vector(jnp.zeros(0), where="test").shape == (0,)


@pytest.mark.parametrize("bad", [jnp.asarray(1.0), jnp.ones((2, 2))])
def test_to_jax_vector_rejects_non_vectors(bad) -> None:
    """Tests that scalar and matrix outputs raise TapeConstructionError."""
    with pytest.raises(TapeConstructionError):
        to_jax_vector(bad, where="test")


def test_to_jax_vector_rejects_non_numeric() -> None:
    """Tests that non-numeric outputs raise TapeConstructionError."""
    with pytest.raises(TapeConstructionError):
        to_jax_vector(["a", "b"], where="test")


def test_select_jacobian_transform_auto() -> None:
    """Tests automatic selection between reverse and forward mode."""
    assert select_jacobian_transform(2, 5) is jax.jacrev
    assert select_jacobian_transform(5, 2) is jax.jacfwd


def test_select_jacobian_transform_explicit_and_invalid() -> None:
    """Tests explicit modes and rejection of unknown modes."""
    assert select_jacobian_transform(5, 2, "rev") is jax.jacrev
    assert select_jacobian_transform(2, 5, "fwd") is jax.jacfwd
    with pytest.raises(ValueError):
        select_jacobian_transform(2, 5, "central")
