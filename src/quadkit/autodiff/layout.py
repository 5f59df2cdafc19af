"""Layout of the independent-variable vector of a tape.

A tape is recorded over one flat vector ``z``. The layout names the
consecutive blocks of ``z`` (time, state, input, parameters) so that
callers can assemble query points and read Jacobian sub-blocks by name.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray

__all__ = [
    "InputBlock",
    "TapeLayout",
]


@dataclass(frozen=True)
class InputBlock:
    """One named block of a tape input vector.

    A ``scalar`` block has size one and is handed to the residual as a
    0-d value instead of a length-1 vector (used for time).
    """

    name: str
    size: int
    scalar: bool = False

    def __post_init__(self):
        if int(self.size) < 0:
            raise ValueError(f"block {self.name!r} must have a non-negative size; got {self.size}.")
        if self.scalar and self.size != 1:
            raise ValueError(f"scalar block {self.name!r} must have size 1; got {self.size}.")


class TapeLayout:
    """Ordered blocks making up the independent-variable vector of a tape."""

    def __init__(self, blocks: Iterable[InputBlock]):
        self.blocks: tuple[InputBlock, ...] = tuple(blocks)
        names = [b.name for b in self.blocks]
        if len(set(names)) != len(names):
            raise ValueError(f"block names must be unique; got {names}.")

        self._slices: dict[str, slice] = {}
        start = 0
        for block in self.blocks:
            self._slices[block.name] = slice(start, start + block.size)
            start += block.size
        self.size = start

    @classmethod
    def intermediate(cls, state_dim: int, input_dim: int, num_parameters: int) -> TapeLayout:
        """Layout ``[t, x, u, p]`` of an intermediate cost residual."""
        return cls(
            (
                InputBlock("time", 1, scalar=True),
                InputBlock("state", state_dim),
                InputBlock("input", input_dim),
                InputBlock("parameters", num_parameters),
            )
        )

    @classmethod
    def final(cls, state_dim: int, num_parameters: int) -> TapeLayout:
        """Layout ``[t, x, p]`` of a final cost residual."""
        return cls(
            (
                InputBlock("time", 1, scalar=True),
                InputBlock("state", state_dim),
                InputBlock("parameters", num_parameters),
            )
        )

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(b.name for b in self.blocks)

    def block_size(self, name: str) -> int:
        return self.slice(name).stop - self.slice(name).start

    def slice(self, name: str) -> slice:
        """Returns the slice of ``z`` occupied by block ``name``.

        Raises:
            KeyError: If the layout has no block ``name``.
        """
        try:
            return self._slices[name]
        except KeyError:
            raise KeyError(f"unknown block {name!r}; layout has {self.names}.") from None

    def columns(self, names: Sequence[str]) -> NDArray[np.intp]:
        """Returns the indices of ``z`` covered by the blocks ``names``, in that order."""
        if not names:
            return np.zeros(0, dtype=np.intp)
        return np.concatenate(
            [np.arange(self.slice(n).start, self.slice(n).stop, dtype=np.intp) for n in names]
        )

    def split(self, z):
        """Splits a flat vector into per-block values (works on JAX tracers too)."""
        parts = []
        for block in self.blocks:
            sl = self._slices[block.name]
            parts.append(z[sl.start] if block.scalar else z[sl])
        return tuple(parts)

    def concatenate(self, **values: ArrayLike) -> NDArray[np.float64]:
        """Assembles a flat ``float64`` vector from one value per block.

        Raises:
            ValueError: If a block is missing, unknown, or has the wrong size.
        """
        missing = set(self.names) - set(values)
        unknown = set(values) - set(self.names)
        if missing or unknown:
            raise ValueError(
                f"concatenate expects exactly the blocks {self.names}; "
                f"missing={sorted(missing)}, unknown={sorted(unknown)}."
            )
        parts = []
        for block in self.blocks:
            arr = np.asarray(values[block.name], dtype=np.float64).reshape(-1)
            if arr.size != block.size:
                raise ValueError(
                    f"block {block.name!r} expects {block.size} entries; got {arr.size}."
                )
            parts.append(arr)
        return np.concatenate(parts)

    def to_dict(self) -> dict[str, int]:
        return {b.name: b.size for b in self.blocks}

    def __eq__(self, other) -> bool:
        if not isinstance(other, TapeLayout):
            return NotImplemented
        return self.blocks == other.blocks

    def __hash__(self) -> int:
        return hash(self.blocks)

    def __repr__(self) -> str:
        inner = ", ".join(f"{b.name}={b.size}" for b in self.blocks)
        return f"TapeLayout({inner})"
