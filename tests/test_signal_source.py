import numpy as np
import pytest

from config import MAX_SAMPLES_PER_READ
from signal_source import ArraySource, LissajousSource, load_source


def test_first_read_only_starts_clock():
    src = LissajousSource(sample_rate=1000)
    first = src.read(0.0)
    assert first.shape == (0, 2)
    assert first.dtype == np.float32


def test_lissajous_paced_by_wall_clock():
    src = LissajousSource(fx=10.0, fy=20.0, phase=0.25, amplitude=0.8,
                          sample_rate=1000)
    src.read(0.0)
    out = src.read(0.5)
    assert out.shape == (500, 2)
    assert out[0] == pytest.approx([0.0, 0.8])
    assert np.abs(out).max() <= 0.8 + 1e-6


def test_lissajous_update_from_settings():
    src = LissajousSource()
    src.update({"source_fx": 1.0, "source_fy": 2.0,
                "source_phase": 0.5, "source_amplitude": 0.3})
    assert (src.fx, src.fy, src.phase, src.amplitude) == (1.0, 2.0, 0.5, 0.3)


def test_long_stall_is_capped():
    src = LissajousSource(sample_rate=1000)
    src.read(0.0)
    assert len(src.read(100.0)) == MAX_SAMPLES_PER_READ


def test_array_source_loops():
    data = np.array([[0.1, 0.2], [0.3, 0.4], [0.5, 0.6]])
    src = ArraySource(data, sample_rate=8)
    src.read(0.0)
    out = src.read(0.875)
    assert len(out) == 7
    assert np.allclose(out, data[[0, 1, 2, 0, 1, 2, 0]])
    assert not src.finished


def test_array_source_without_loop_runs_out():
    data = np.array([[0.1, 0.2], [0.3, 0.4], [0.5, 0.6]])
    src = ArraySource(data, sample_rate=8, loop=False)
    src.read(0.0)
    assert len(src.read(0.875)) == 3
    assert src.finished
    assert src.read(1.0).shape == (0, 2)


def test_array_source_clips_to_unit_square():
    src = ArraySource([[2.0, -3.0]], sample_rate=8)
    assert src.samples.tolist() == [[1.0, -1.0]]


@pytest.mark.parametrize("bad", [np.zeros((3, 3)), np.zeros((0, 2)), np.zeros(4)])
def test_array_source_rejects_bad_shapes(bad):
    with pytest.raises(ValueError):
        ArraySource(bad)


def test_rejects_non_positive_rate():
    with pytest.raises(ValueError):
        LissajousSource(sample_rate=0)


def test_load_source(tmp_path):
    path = tmp_path / "trace.npy"
    np.save(path, np.array([[0.0, 0.5], [0.5, 0.0]], dtype=np.float32))
    src = load_source(str(path), sample_rate=4, loop=False)
    assert isinstance(src, ArraySource)
    assert len(src.samples) == 2
