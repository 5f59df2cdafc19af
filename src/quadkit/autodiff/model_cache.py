"""Persisted compiled models for differentiable function records.

A compiled model is a pair of ``jax.export.Exported`` functions: the
jitted value function ``z -> values`` and the jitted ``z -> (values,
jacobian)``. Both are serialized next to a small JSON metadata file
describing the tape they were built from. All files live under
``folder/model_name/`` and are named after the residual kind
(``intermediate`` or ``final``)::

    /tmp/ocs2/my_cost/intermediate.jaxexport
    /tmp/ocs2/my_cost/intermediate.value.jaxexport
    /tmp/ocs2/my_cost/intermediate.json

Loading checks the metadata against the current tape (block sizes,
output dimension and residual fingerprint) and raises
:class:`quadkit.exceptions.ModelLoadError` on any mismatch, so a stale or
foreign artifact never yields wrong-shaped results.
"""

from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import jax
import jax.numpy as jnp
import numpy as np
from jax import export as jax_export
from numpy.typing import ArrayLike, NDArray

from quadkit.autodiff.layout import TapeLayout
from quadkit.exceptions import ModelLoadError

__all__ = [
    "FORMAT_VERSION",
    "CompiledModel",
    "ModelCacheHandle",
]

FORMAT_VERSION = 2
ARTIFACT_SUFFIX = ".jaxexport"
VALUE_ARTIFACT_SUFFIX = ".value.jaxexport"
METADATA_SUFFIX = ".json"


class CompiledModel:
    """Compiled value and value-and-Jacobian evaluators of one residual function.

    Instances are immutable and may be shared between engine copies.
    """

    def __init__(
        self,
        exported: jax_export.Exported,
        value_exported: jax_export.Exported,
        layout: TapeLayout,
        output_dim: int,
        fingerprint: str,
    ):
        self._exported = exported
        self._value_exported = value_exported
        self.layout = layout
        self.output_dim = int(output_dim)
        self.fingerprint = fingerprint

    @classmethod
    def export(
        cls,
        value_function: Callable[[jnp.ndarray], jnp.ndarray],
        value_and_jacobian_function: Callable[[jnp.ndarray], tuple[jnp.ndarray, jnp.ndarray]],
        layout: TapeLayout,
        output_dim: int,
        fingerprint: str,
    ) -> CompiledModel:
        """Compiles both functions for a ``float64`` input of the layout's size."""
        spec = jax.ShapeDtypeStruct((layout.size,), jnp.float64)
        exported = jax_export.export(jax.jit(value_and_jacobian_function))(spec)
        value_exported = jax_export.export(jax.jit(value_function))(spec)
        return cls(exported, value_exported, layout, output_dim, fingerprint)

    @property
    def input_dim(self) -> int:
        return self.layout.size

    def value(self, z: ArrayLike) -> NDArray[np.float64]:
        """Evaluates the residual values only."""
        values = self._value_exported.call(jnp.asarray(z, dtype=jnp.float64))
        return np.asarray(values, dtype=np.float64).reshape(self.output_dim)

    def __call__(self, z: ArrayLike) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Evaluates residual values and the full Jacobian ``d values / d z``."""
        values, jac = self._exported.call(jnp.asarray(z, dtype=jnp.float64))
        values = np.asarray(values, dtype=np.float64).reshape(self.output_dim)
        jac = np.asarray(jac, dtype=np.float64).reshape(self.output_dim, self.input_dim)
        return values, jac

    def serialize(self) -> tuple[bytes, bytes]:
        """Returns the serialized ``(value_and_jacobian, value)`` exports."""
        return bytes(self._exported.serialize()), bytes(self._value_exported.serialize())

    def metadata(self, kind: str) -> dict[str, Any]:
        return {
            "format_version": FORMAT_VERSION,
            "kind": kind,
            "blocks": self.layout.to_dict(),
            "output_dim": self.output_dim,
            "fingerprint": self.fingerprint,
            "jax_version": jax.__version__,
        }


class ModelCacheHandle:
    """Location of one persisted compiled model.

    Args:
        folder: Root folder of the model cache.
        model_name: Name of the model library; becomes a subfolder.
        kind: Residual kind, e.g. ``"intermediate"`` or ``"final"``.
    """

    def __init__(self, folder: str | os.PathLike, model_name: str, kind: str):
        if not model_name:
            raise ValueError("model_name must be a non-empty string.")
        self.folder = Path(folder)
        self.model_name = model_name
        self.kind = kind

    @property
    def directory(self) -> Path:
        return self.folder / self.model_name

    @property
    def artifact_path(self) -> Path:
        return self.directory / f"{self.kind}{ARTIFACT_SUFFIX}"

    @property
    def value_artifact_path(self) -> Path:
        return self.directory / f"{self.kind}{VALUE_ARTIFACT_SUFFIX}"

    @property
    def metadata_path(self) -> Path:
        return self.directory / f"{self.kind}{METADATA_SUFFIX}"

    def _paths(self) -> tuple[Path, Path, Path]:
        return self.artifact_path, self.value_artifact_path, self.metadata_path

    def exists(self) -> bool:
        return all(path.is_file() for path in self._paths())

    def save(self, model: CompiledModel) -> None:
        """Writes the serialized model and its metadata.

        Each file is written to a temporary file in the target folder and
        moved into place, so readers never see partial artifacts. The
        metadata goes last; a model counts as saved only once it exists.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        artifact, value_artifact = model.serialize()
        _atomic_write(self.artifact_path, artifact)
        _atomic_write(self.value_artifact_path, value_artifact)
        meta = json.dumps(model.metadata(self.kind), indent=2, sort_keys=True)
        _atomic_write(self.metadata_path, meta.encode("utf-8"))

    def load(
        self,
        layout: TapeLayout,
        output_dim: int,
        fingerprint: str,
    ) -> CompiledModel:
        """Loads a persisted model built for exactly this tape.

        Args:
            layout: Layout of the current tape.
            output_dim: Output dimension of the current tape.
            fingerprint: Fingerprint of the current tape.

        Returns:
            The deserialized compiled model.

        Raises:
            ModelLoadError: If the artifacts are missing, unreadable, or were
                built for a different tape.
        """
        if not self.exists():
            raise ModelLoadError(f"no compiled model at {self.artifact_path}.")

        try:
            meta = json.loads(self.metadata_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ModelLoadError(f"unreadable model metadata {self.metadata_path}.") from exc

        if meta.get("format_version") != FORMAT_VERSION:
            raise ModelLoadError(
                f"{self.metadata_path}: format version {meta.get('format_version')!r} "
                f"!= {FORMAT_VERSION}."
            )
        if meta.get("blocks") != layout.to_dict():
            raise ModelLoadError(
                f"{self.metadata_path}: model was built for blocks {meta.get('blocks')}, "
                f"current tape has {layout.to_dict()}."
            )
        if meta.get("output_dim") != int(output_dim):
            raise ModelLoadError(
                f"{self.metadata_path}: model output dimension {meta.get('output_dim')} "
                f"!= {output_dim}."
            )
        if meta.get("fingerprint") != fingerprint:
            raise ModelLoadError(
                f"{self.metadata_path}: residual fingerprint changed since the model was built."
            )

        m, n = int(output_dim), layout.size
        exported = _deserialize(self.artifact_path, n, [(m,), (m, n)])
        value_exported = _deserialize(self.value_artifact_path, n, [(m,)])
        return CompiledModel(exported, value_exported, layout, output_dim, fingerprint)

    def remove(self) -> None:
        """Deletes the persisted files if present."""
        for path in self._paths():
            path.unlink(missing_ok=True)

    def __repr__(self) -> str:
        return f"ModelCacheHandle({str(self.folder)!r}, {self.model_name!r}, {self.kind!r})"


def _deserialize(path: Path, input_dim: int, expected_out: list[tuple[int, ...]]) -> jax_export.Exported:
    try:
        exported = jax_export.deserialize(bytearray(path.read_bytes()))
    except OSError as exc:
        raise ModelLoadError(f"could not read {path}.") from exc
    except Exception as exc:  # corrupt flatbuffers fail with arbitrary errors
        raise ModelLoadError(f"could not deserialize {path}.") from exc

    in_shapes = [tuple(a.shape) for a in exported.in_avals]
    out_shapes = [tuple(a.shape) for a in exported.out_avals]
    if in_shapes != [(input_dim,)] or out_shapes != expected_out:
        raise ModelLoadError(
            f"{path}: exported shapes {in_shapes} -> {out_shapes} do not "
            f"match the tape ({input_dim},) -> {expected_out}."
        )
    return exported


def _file_mode() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def _atomic_write(path: Path, data: bytes) -> None:
    # mkstemp creates 0600 files; published artifacts get the usual umask mode.
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.chmod(tmp, _file_mode())
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
