"""Unit tests for quadkit.autodiff.layout."""

import numpy as np
import pytest

from quadkit.autodiff.layout import InputBlock, TapeLayout


def test_intermediate_layout_slices():
    """Test block order and offsets of the intermediate layout [t, x, u, p]."""
    layout = TapeLayout.intermediate(state_dim=3, input_dim=2, num_parameters=4)
    assert layout.names == ("time", "state", "input", "parameters")
    assert layout.size == 10
    assert layout.slice("time") == slice(0, 1)
    assert layout.slice("state") == slice(1, 4)
    assert layout.slice("input") == slice(4, 6)
    assert layout.slice("parameters") == slice(6, 10)
    assert layout.block_size("input") == 2


def test_final_layout_has_no_input_block():
    """Test that the final layout is [t, x, p]."""
    layout = TapeLayout.final(state_dim=2, num_parameters=0)
    assert layout.names == ("time", "state", "parameters")
    assert layout.size == 3
    with pytest.raises(KeyError):
        layout.slice("input")


def test_concatenate_and_split_round_trip():
    """Test that split inverts concatenate and time is handed out as a scalar."""
    layout = TapeLayout.intermediate(2, 1, 1)
    z = layout.concatenate(time=0.5, state=[1.0, 2.0], input=[3.0], parameters=[4.0])
    np.testing.assert_array_equal(z, [0.5, 1.0, 2.0, 3.0, 4.0])
    t, x, u, p = layout.split(z)
    assert np.ndim(t) == 0 and t == 0.5
    np.testing.assert_array_equal(x, [1.0, 2.0])
    np.testing.assert_array_equal(u, [3.0])
    np.testing.assert_array_equal(p, [4.0])


def test_concatenate_rejects_wrong_blocks():
    """Test that missing, unknown and wrongly sized blocks raise ValueError."""
    layout = TapeLayout.final(2, 0)
    with pytest.raises(ValueError):
        layout.concatenate(time=0.0, state=[1.0, 2.0])
    with pytest.raises(ValueError):
        layout.concatenate(time=0.0, state=[1.0, 2.0], parameters=[], input=[1.0])
    with pytest.raises(ValueError):
        layout.concatenate(time=0.0, state=[1.0], parameters=[])


def test_columns_follow_requested_order():
    """Test that columns concatenates block indices in the requested order."""
    layout = TapeLayout.intermediate(2, 1, 0)
    np.testing.assert_array_equal(layout.columns(("input", "state")), [3, 1, 2])
    assert layout.columns(()).size == 0


def test_invalid_blocks():
    """Test block validation."""
    with pytest.raises(ValueError):
        InputBlock("time", 2, scalar=True)
    with pytest.raises(ValueError):
        InputBlock("state", -1)
    with pytest.raises(ValueError):
        TapeLayout([InputBlock("x", 1), InputBlock("x", 2)])


def test_layout_equality():
    """Test that layouts compare by their blocks."""
    assert TapeLayout.final(2, 1) == TapeLayout.final(2, 1)
    assert TapeLayout.final(2, 1) != TapeLayout.final(2, 2)
    assert hash(TapeLayout.final(2, 1)) == hash(TapeLayout.final(2, 1))
