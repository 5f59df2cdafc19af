"""Unit tests for quadkit.autodiff.tape (differentiable function records)."""

import math

import jax.numpy as jnp
import numpy as np
import pytest

from quadkit.autodiff.layout import TapeLayout
from quadkit.autodiff.model_cache import ModelCacheHandle
from quadkit.autodiff.tape import DifferentiableFunctionRecord
from quadkit.exceptions import NotInitializedError, TapeConstructionError


def _residual(t, x, u, p):
    """Residual with time, state, input and parameter dependence."""
    return jnp.stack([
        jnp.sin(t) * x[0] - u[0],
        x[0] * x[1] + p[0],
        jnp.linalg.norm(x) - u[0] ** 2,
    ])


def _analytic_jacobian(z):
    """Full analytic Jacobian of _residual with respect to [t, x0, x1, u0, p0]."""
    t, x0, x1, u0, _ = z
    nrm = math.hypot(x0, x1)
    return np.array([
        [math.cos(t) * x0, math.sin(t), 0.0, -1.0, 0.0],
        [0.0, x1, x0, 0.0, 1.0],
        [0.0, x0 / nrm, x1 / nrm, -2.0 * u0, 0.0],
    ])


@pytest.fixture
def record(model_folder):
    """Return a taped and compiled record of _residual."""
    dfr = DifferentiableFunctionRecord("intermediate", TapeLayout.intermediate(2, 1, 1))
    dfr.build_tape(_residual)
    dfr.compile(ModelCacheHandle(model_folder, "tape_test", "intermediate"), force_recompile=True, verbose=False)
    return dfr


Z0 = np.array([0.3, 1.2, -0.7, 0.4, 2.0])


def test_build_tape_records_output_dim_and_fingerprint():
    """Test that taping records the output dimension and a fingerprint."""
    dfr = DifferentiableFunctionRecord("intermediate", TapeLayout.intermediate(2, 1, 1))
    assert not dfr.has_tape
    dfr.build_tape(_residual)
    assert dfr.has_tape
    assert dfr.output_dim == 3
    assert isinstance(dfr.fingerprint, str) and len(dfr.fingerprint) == 64
    assert not dfr.is_compiled


def test_evaluate_matches_residual(record):
    """Test evaluation against the plain residual."""
    t, x, u, p = Z0[0], Z0[1:3], Z0[3:4], Z0[4:]
    expected = np.asarray(_residual(t, jnp.asarray(x), jnp.asarray(u), jnp.asarray(p)))
    np.testing.assert_allclose(record.evaluate(Z0), expected, rtol=1e-14, atol=1e-14)


def test_jacobian_matches_analytic(record):
    """Test the full Jacobian and restricted sub-blocks."""
    jac = _analytic_jacobian(Z0)
    np.testing.assert_allclose(record.jacobian(Z0), jac, rtol=1e-12, atol=1e-12)
    np.testing.assert_allclose(record.jacobian(Z0, blocks=("state",)), jac[:, 1:3], rtol=1e-12, atol=1e-12)
    np.testing.assert_allclose(record.jacobian(Z0, blocks=("state", "input")), jac[:, 1:4], rtol=1e-12, atol=1e-12)
    np.testing.assert_allclose(record.jacobian(Z0, blocks=("time",)), jac[:, :1], rtol=1e-12, atol=1e-12)


def test_value_and_jacobian_consistent(record):
    """Test that value_and_jacobian agrees with evaluate and jacobian."""
    values, jac = record.value_and_jacobian(Z0)
    np.testing.assert_allclose(values, record.evaluate(Z0), rtol=1e-14, atol=1e-14)
    assert jac.shape == (3, 5)


def test_jvp_matches_jacobian_product(record):
    """Test Jacobian-vector products."""
    v = np.array([0.1, -0.2, 0.3, 0.5, -1.0])
    np.testing.assert_allclose(record.jvp(Z0, v), _analytic_jacobian(Z0) @ v, rtol=1e-12, atol=1e-12)


@pytest.mark.parametrize("mode", ["fwd", "rev"])
def test_jacobian_modes_agree(model_folder, mode):
    """Test that forward and reverse mode give the same Jacobian."""
    dfr = DifferentiableFunctionRecord("intermediate", TapeLayout.intermediate(2, 1, 1), jacobian_mode=mode)
    dfr.build_tape(_residual)
    dfr.compile(ModelCacheHandle(model_folder, mode, "intermediate"), force_recompile=True, verbose=False)
    np.testing.assert_allclose(dfr.jacobian(Z0), _analytic_jacobian(Z0), rtol=1e-12, atol=1e-12)


def test_numpy_operations_are_rejected():
    """Test that residuals calling numpy on traced values cannot be taped."""
    dfr = DifferentiableFunctionRecord("intermediate", TapeLayout.intermediate(1, 1, 0))
    with pytest.raises(TapeConstructionError):
        dfr.build_tape(lambda t, x, u, p: np.sin(np.asarray(x)) - u)


def test_python_control_flow_is_rejected():
    """Test that branching on traced values cannot be taped."""
    def residual(t, x, u, p):
        if x[0] > 0:
            return x
        return -x

    dfr = DifferentiableFunctionRecord("intermediate", TapeLayout.intermediate(1, 1, 0))
    with pytest.raises(TapeConstructionError):
        dfr.build_tape(residual)


@pytest.mark.parametrize("output", [lambda x: jnp.sum(x), lambda x: jnp.outer(x, x)])
def test_non_vector_output_is_rejected(output):
    """Test that scalar and matrix outputs cannot be taped."""
    dfr = DifferentiableFunctionRecord("final", TapeLayout.final(2, 0))
    with pytest.raises(TapeConstructionError):
        dfr.build_tape(lambda t, x, p: output(x))


def test_retaping_with_different_output_dim_fails(record):
    """Test that a compiled record refuses a residual of another output dimension."""
    with pytest.raises(TapeConstructionError):
        record.build_tape(lambda t, x, u, p: x)


def test_use_before_tape_or_compile_raises(model_folder):
    """Test that evaluation requires a tape and a compiled model."""
    dfr = DifferentiableFunctionRecord("final", TapeLayout.final(1, 0))
    with pytest.raises(NotInitializedError):
        dfr.evaluate([0.0, 1.0])
    with pytest.raises(NotInitializedError):
        dfr.compile(ModelCacheHandle(model_folder, "early", "final"))
    dfr.build_tape(lambda t, x, p: x)
    with pytest.raises(NotInitializedError):
        dfr.jacobian([0.0, 1.0])


def test_wrong_point_size_raises(record):
    """Test that query points must match the layout."""
    with pytest.raises(ValueError):
        record.evaluate(Z0[:-1])
    with pytest.raises(ValueError):
        record.jvp(Z0, np.ones(4))


def test_zero_output_residual_is_not_compiled(model_folder):
    """Test that a zero-output residual yields empty results without a model."""
    dfr = DifferentiableFunctionRecord("final", TapeLayout.final(2, 0))
    dfr.build_tape(lambda t, x, p: jnp.zeros(0))
    handle = ModelCacheHandle(model_folder, "empty", "final")
    assert dfr.compile(handle, verbose=False) is None
    assert dfr.is_compiled
    assert not handle.exists()
    assert dfr.evaluate([0.0, 1.0, 2.0]).shape == (0,)
    values, jac = dfr.value_and_jacobian([0.0, 1.0, 2.0])
    assert values.shape == (0,) and jac.shape == (0, 3)
    assert dfr.jvp([0.0, 1.0, 2.0], [1.0, 1.0, 1.0]).shape == (0,)


def test_fingerprint_tracks_closed_over_constants():
    """Test that changing a captured weight changes the fingerprint."""
    def make(weight):
        w = jnp.asarray([weight, 2.0])
        dfr = DifferentiableFunctionRecord("final", TapeLayout.final(2, 0))
        dfr.build_tape(lambda t, x, p: w * x)
        return dfr.fingerprint

    assert make(1.0) == make(1.0)
    assert make(1.0) != make(3.0)


def test_tape_is_traced_on_abstract_input():
    """Test that the tape input is an abstract float64 vector of the layout size."""
    layout = TapeLayout.final(2, 0)
    dfr = DifferentiableFunctionRecord("final", layout)
    dfr.build_tape(lambda t, x, p: x * t)
    (aval,) = dfr.jaxpr.in_avals
    assert aval.shape == (layout.size,)
    assert aval.dtype == jnp.float64


def test_evaluate_goes_through_compiled_model(record, monkeypatch):
    """Test that evaluate uses the compiled value function."""
    np.testing.assert_array_equal(record.evaluate(Z0), record.compiled_model.value(Z0))
    sentinel = np.array([7.0, 8.0, 9.0])
    monkeypatch.setattr(record.compiled_model, "value", lambda z: sentinel)
    assert record.evaluate(Z0) is sentinel
