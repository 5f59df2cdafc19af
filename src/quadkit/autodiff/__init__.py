"""JAX taping, compilation and model caching."""
