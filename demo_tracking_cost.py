"""Gauss-Newton tracking cost of a double integrator.

The state is ``x = [position, velocity]`` and the input ``u`` is an
acceleration. The reference trajectory is passed to the residuals as
parameters, so the compiled models do not depend on it.

Run with:
    python demo_tracking_cost.py
"""

from __future__ import annotations

import logging

import jax.numpy as jnp
import numpy as np

from quadkit import FunctionParameters, QuadraticGaussNewtonCost, ResidualSpec

Q_SQRT = jnp.asarray([1.0, 0.5])
R_SQRT = jnp.asarray([0.1])
QF_SQRT = jnp.asarray([10.0, 5.0])


def reference(t: float) -> np.ndarray:
    """Sinusoidal position reference with matching velocity."""
    return np.array([np.sin(t), np.cos(t)])


def tracking_residual(t, x, u, p):
    return jnp.concatenate([Q_SQRT * (x - p), R_SQRT * u])


def terminal_residual(t, x, p):
    return QF_SQRT * (x - p)


def main() -> None:
    """Builds the cost and prints its quadratic model along a short rollout."""
    logging.basicConfig(level=logging.INFO, format="%(name)s | %(levelname)s | %(message)s")

    spec = ResidualSpec(
        state_dim=2,
        input_dim=1,
        intermediate=tracking_residual,
        final=terminal_residual,
        intermediate_parameters=FunctionParameters(reference, num_parameters=2),
        final_parameters=FunctionParameters(reference, num_parameters=2),
    )
    cost = QuadraticGaussNewtonCost(spec)
    cost.initialize("double_integrator_tracking", recompile_libraries=False)

    x = np.zeros(2)
    u = np.array([0.5])
    dt = 0.1
    print("t\tL\t\tdL/dx\t\t\tdL/du\t\tdL/dt")
    for k in range(5):
        t = k * dt
        approx = cost.cost_quadratic_approximation(t, x, u)
        dldt = cost.cost_derivative_time(t, x, u)
        print(f"{t:.1f}\t{approx.value:.4f}\t\t{approx.gradient_x}\t{approx.gradient_u}\t{dldt:.4f}")
        x = x + dt * np.array([x[1], u[0]])

    final = cost.final_cost_quadratic_approximation(5 * dt, x)
    print(f"Phi: {final.value:.4f}\ndPhi/dx: {final.gradient_x}\nd2Phi/dx2:\n{final.hessian_xx}")


if __name__ == "__main__":
    main()
