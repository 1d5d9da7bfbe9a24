import math
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from config import BRIGHTNESS_MAX, CHUNK_COUNT, NORM_K
from phosphor import (
    FrameBufferPair, accumulate, excitation, fold_segments,
    is_discarded, pixel_positions, tone_map,
)
from scope_types import Frame, ScopeConfig, cell_index, make_lines


def _no_lines():
    return make_lines([], [], [])


def _point(x, y, t):
    return make_lines([[x, y]], [[0.0, 0.0]], [t])


def _single_chunk_frame(lines, cell, total_time):
    chunks = np.zeros((CHUNK_COUNT, 2), dtype=np.uint32)
    chunks[cell] = (0, len(lines))
    return Frame(lines=lines, chunks=chunks, total_time=total_time)


def test_excitation_peak_is_normalised_gaussian():
    sigma, intensity = 0.05, 2.0
    expected = intensity / (sigma * math.sqrt(2.0 * math.pi))
    assert float(excitation(0.0, sigma, intensity)) == pytest.approx(expected)
    # one sigma out: exp(-1/2)
    assert float(excitation(sigma, sigma, intensity)) == pytest.approx(
        expected * math.exp(-0.5))


def test_excitation_strictly_decreasing():
    d = np.linspace(0.0, 5 * 0.01, 200)
    e = excitation(d, 0.01, 1.0)
    assert np.all(np.diff(e) < 0)


def test_empty_chunk_is_pure_decay():
    cfg = ScopeConfig(decay=0.99)
    out = fold_segments(0.3, 0.2, 1.5, _no_lines(), 10.0, cfg)
    assert float(out) == pytest.approx(1.5 * 0.99 ** 10)


def test_empty_chunk_result_is_clamped():
    cfg = ScopeConfig(decay=0.999)
    assert float(fold_segments(0.0, 0.0, 3.0, _no_lines(), 1.0, cfg)) == BRIGHTNESS_MAX
    assert float(fold_segments(0.0, 0.0, -5.0, _no_lines(), 1.0, cfg)) == 0.0


def test_point_segment_at_pixel_at_time_zero():
    cfg = ScopeConfig(decay=0.9, sigma=0.05, intensity=1e-3)
    prev, total = 0.5, 2.0
    out = fold_segments(0.25, -0.25, prev, _point(0.25, -0.25, 0.0), total, cfg)
    contrib = float(excitation(0.0, cfg.sigma, cfg.intensity)) / (NORM_K * cfg.sigma)
    assert float(out) == pytest.approx((prev + contrib) * 0.9 ** total, rel=1e-5)


def test_end_to_end_scenario_single_pixel_at_origin():
    lines = _point(0.0, 0.0, 0.5)
    cell = int(cell_index(0.0, 0.0))
    frame = _single_chunk_frame(lines, cell, total_time=1.0)

    # 3x3 image: the centre pixel sits exactly on the origin
    cfg = ScopeConfig(window_size=(3.0, 3.0), decay=0.9, sigma=0.05,
                      intensity=1.0)
    prev = np.zeros((3, 3), dtype=np.float32)
    out = accumulate(prev, frame, cfg)

    contrib = float(excitation(0.0, 0.05, 1.0)) / (NORM_K * 0.05)
    expected = min((0.0 * 0.9 ** 0.5 + contrib) * 0.9 ** 0.5, BRIGHTNESS_MAX)
    assert float(out[1, 1]) == pytest.approx(expected, abs=1e-5)


def test_end_to_end_scenario_unclamped_value():
    cfg = ScopeConfig(window_size=(3.0, 3.0), decay=0.9, sigma=0.05,
                      intensity=1e-3)
    frame = _single_chunk_frame(_point(0.0, 0.0, 0.5),
                                int(cell_index(0.0, 0.0)), total_time=1.0)
    out = accumulate(np.zeros((3, 3), dtype=np.float32), frame, cfg)

    contrib = float(excitation(0.0, 0.05, 1e-3)) / (NORM_K * 0.05)
    assert float(out[1, 1]) == pytest.approx(contrib * 0.9 ** 0.5, rel=1e-5)
    # every other pixel sits in an empty chunk and stays dark
    mask = np.ones((3, 3), dtype=bool)
    mask[1, 1] = False
    assert np.all(out[mask] == 0.0)


def test_farther_pixel_receives_less():
    cfg = ScopeConfig(decay=0.999, sigma=0.02, intensity=1e-4)
    lines = make_lines([[-0.5, 0.0]], [[1.0, 0.0]], [0.0])
    x = np.array([0.0, 0.0, 0.0])
    y = np.array([0.005, 0.01, 0.03])
    out = fold_segments(x, y, np.zeros(3), lines, 1.0, cfg)
    assert out[0] > out[1] > out[2]


def test_projection_is_clamped_to_segment_ends():
    cfg = ScopeConfig(decay=0.999, sigma=0.02, intensity=1e-4)
    lines = make_lines([[0.0, 0.0]], [[0.1, 0.0]], [0.0])
    # beyond the end point the distance is to the end point, not the line
    beyond = fold_segments(0.15, 0.0, 0.0, lines, 0.0, cfg)
    on_end = fold_segments(0.1, 0.0, 0.0, lines, 0.0, cfg)
    inside = fold_segments(0.05, 0.0, 0.0, lines, 0.0, cfg)
    assert float(inside) == pytest.approx(float(on_end))
    assert float(beyond) < float(on_end)


def test_swapping_segments_in_time_changes_result():
    cfg = ScopeConfig(decay=0.9, sigma=0.05, intensity=1e-3)
    starts = [[0.0, 0.0], [0.06, 0.0]]
    vs = [[0.0, 0.0], [0.0, 0.0]]
    a_first = make_lines(starts, vs, [1.0, 3.0])
    b_first = make_lines(starts[::-1], vs, [1.0, 3.0])
    r1 = fold_segments(0.0, 0.0, 0.2, a_first, 4.0, cfg)
    r2 = fold_segments(0.0, 0.0, 0.2, b_first, 4.0, cfg)
    assert float(r1) != pytest.approx(float(r2))


def test_non_finite_contribution_is_skipped():
    # intensity / sigma overflows to inf → the term is dropped
    cfg = ScopeConfig(decay=0.9, sigma=1e-300, intensity=1e300)
    out = fold_segments(np.array([0.0, 0.1]), np.array([0.0, 0.0]),
                        np.array([0.5, 0.5]), _point(0.0, 0.0, 0.0), 2.0, cfg)
    assert np.all(np.isfinite(out))
    assert out == pytest.approx([0.5 * 0.81, 0.5 * 0.81])


def test_clamp_holds_for_extreme_parameters():
    cfg = ScopeConfig(window_size=(40.0, 40.0), decay=0.5,
                      sigma=1e-30, intensity=1e30)
    rng = np.random.default_rng(7)
    n = 50
    lines = make_lines(rng.uniform(-1, 1, (n, 2)),
                       rng.uniform(-0.05, 0.05, (n, 2)),
                       np.arange(n, dtype=np.float32))
    # every cell walks the whole list
    chunks = np.zeros((CHUNK_COUNT, 2), dtype=np.uint32)
    chunks[:, 1] = n
    prev = rng.uniform(-3.0, 5.0, (40, 40)).astype(np.float32)
    out = accumulate(prev, Frame(lines, chunks, float(n)), cfg)
    assert out.min() >= 0.0
    assert out.max() <= BRIGHTNESS_MAX


def test_discard_mask_depends_only_on_geometry():
    _, _, keep_a = pixel_positions(200, 100)
    _, _, keep_b = pixel_positions(200, 100)
    assert np.array_equal(keep_a, keep_b)
    kept_cols = np.flatnonzero(keep_a.all(axis=0))
    assert kept_cols[0] == 45 and kept_cols[-1] == 154
    assert not keep_a[:, :45].any()


def test_discarded_pixels_are_never_written():
    cfg = ScopeConfig(window_size=(200.0, 100.0))
    frame = _single_chunk_frame(_point(0.0, 0.0, 0.0), 136, 1.0)
    prev = np.ones((100, 200), dtype=np.float32)
    out = np.full_like(prev, -1.0)
    for _ in range(2):
        accumulate(prev, frame, cfg, out=out)
        assert np.all(out[:, :45] == -1.0)
        assert np.all(out[:, 155:] == -1.0)
        assert np.all(out[:, 45:155] >= 0.0)


def test_is_discarded_margin():
    assert not is_discarded(1.1, 0.0)
    assert is_discarded(1.1001, 0.0)
    assert is_discarded(0.0, -1.2)


def test_keep_mask_is_complement_of_discard():
    xx, yy, keep = pixel_positions(200, 100)
    assert np.array_equal(keep, ~is_discarded(xx, yy))
    assert not keep.all() and keep.any()


def test_strided_buffers_are_rejected():
    cfg = ScopeConfig(window_size=(8.0, 8.0))
    prev = np.zeros((8, 8), dtype=np.float32)
    wide = np.zeros((8, 16), dtype=np.float32)
    with pytest.raises(ValueError):
        accumulate(prev, Frame(), cfg, out=wide[:, ::2])
    display = np.zeros((8, 16, 4), dtype=np.float32)
    with pytest.raises(ValueError):
        accumulate(prev, Frame(), cfg, display=display[:, ::2])


def test_display_is_sqrt_tone_map():
    cfg = ScopeConfig(window_size=(16.0, 16.0), decay=0.99, sigma=0.1,
                      intensity=1e-3)
    lines = make_lines([[-0.5, -0.5]], [[1.0, 1.0]], [0.0])
    chunks = np.zeros((CHUNK_COUNT, 2), dtype=np.uint32)
    chunks[:, 1] = 1
    prev = np.full((16, 16), 0.25, dtype=np.float32)
    display = np.zeros((16, 16, 4), dtype=np.float32)
    out = accumulate(prev, Frame(lines, chunks, 1.0), cfg, display=display)
    assert np.allclose(display[..., 1], np.sqrt(out), atol=1e-6)
    assert np.all(display[..., 0] == 0.0)
    assert np.all(display[..., 2] == 0.0)
    assert np.all(display[..., 3] == 1.0)


def test_tone_map_values():
    rgba = tone_map(np.array([[0.0, 1.0, 2.0]]))
    assert rgba.shape == (1, 3, 4)
    assert rgba[0, :, 1] == pytest.approx([0.0, 1.0, math.sqrt(2.0)])


def test_out_must_not_alias_prev():
    prev = np.zeros((8, 8), dtype=np.float32)
    with pytest.raises(ValueError):
        accumulate(prev, Frame(), ScopeConfig(window_size=(8.0, 8.0)), out=prev)


def test_out_of_range_chunk_does_not_crash():
    cfg = ScopeConfig(window_size=(8.0, 8.0), decay=0.5)
    chunks = np.zeros((CHUNK_COUNT, 2), dtype=np.uint32)
    chunks[:] = (1000, 10)
    prev = np.ones((8, 8), dtype=np.float32)
    out = accumulate(prev, Frame(_point(0.0, 0.0, 0.0), chunks, 1.0), cfg)
    assert np.allclose(out, 0.5)


def test_thread_pool_matches_serial():
    cfg = ScopeConfig(window_size=(48.0, 32.0), decay=0.98, sigma=0.02,
                      intensity=1e-4)
    rng = np.random.default_rng(3)
    n = 40
    lines = make_lines(rng.uniform(-1, 1, (n, 2)),
                       rng.uniform(-0.1, 0.1, (n, 2)),
                       np.arange(n, dtype=np.float32))
    chunks = np.zeros((CHUNK_COUNT, 2), dtype=np.uint32)
    chunks[:, 1] = n
    frame = Frame(lines, chunks, float(n))
    prev = rng.uniform(0, 1, (32, 48)).astype(np.float32)

    serial = accumulate(prev, frame, cfg)
    with ThreadPoolExecutor(max_workers=4) as pool:
        pooled = accumulate(prev, frame, cfg, executor=pool)
    assert np.array_equal(serial, pooled)


def test_frame_buffer_pair_swaps_roles():
    pair = FrameBufferPair(4, 3)
    assert pair.size == (4, 3)
    assert pair.front.shape == (3, 4)
    front, back = pair.front, pair.back
    pair.swap()
    assert pair.front is back and pair.back is front
    assert not np.shares_memory(pair.front, pair.back)
