# =============================
# Phosphor decay / excitation kernel (numpy reference)
# =============================
"""
CPU implementation of the per-pixel accumulation pass.  Mirrors
``PHOSPHOR_COMPUTE_SHADER`` one to one and is what the tests check the
GPU output against.

For every pixel, independently::

    next = prev;  t = 0
    for line in chunk(pixel):              # time-sorted
        next *= decay ** (line.time - t);  t = line.time
        next += excitation(d) / (NORM_K * sigma + |line.v|)   # if finite
    next *= decay ** (total_time - t)
    next = clamp(next, 0, BRIGHTNESS_MAX)
    color = (0, sqrt(next), 0, 1)

where ``d`` is the distance from the pixel to the segment with the
projection parameter clamped to [0, 1].

All pixels of one grid cell walk the same segment list, so the fold is
run once per cell with the pixel axis vectorised.  The segment loop stays
sequential: decay is multiplicative and the fold is order dependent.
Cells are independent and may be spread over a thread pool.
"""

import logging
import math
from functools import lru_cache

import numpy as np

from config import BRIGHTNESS_MAX, CHUNK_COUNT, DISCARD_MARGIN, NORM_K
from scope_types import Frame, ScopeConfig, cell_index

log = logging.getLogger(__name__)

_SQRT_2PI = math.sqrt(2.0 * math.pi)


def excitation(d, sigma, intensity):
    """Gaussian density of the beam at distance ``d``, scaled by intensity."""
    d = np.asarray(d, dtype=np.float64)
    return intensity / (sigma * _SQRT_2PI) * np.exp(-0.5 * (d / sigma) ** 2)


def tone_map(brightness, out=None):
    """Brightness ``(h, w)`` → RGBA ``(h, w, 4)`` green preview."""
    b = np.asarray(brightness)
    if out is None:
        out = np.empty(b.shape + (4,), dtype=np.float32)
    out[..., 0] = 0.0
    out[..., 1] = np.sqrt(np.maximum(b, 0.0))
    out[..., 2] = 0.0
    out[..., 3] = 1.0
    return out


# ────────────────── Pixel → square mapping ──────────────────

def is_discarded(x, y):
    return np.maximum(np.abs(x), np.abs(y)) > DISCARD_MARGIN


def pixel_positions(width, height, window_size=None):
    """Aspect-corrected pixel-centre positions and the keep mask.

    Row 0 is the top of the image (``y = +1``).  The longer axis is
    stretched so the unit square stays square; pixels whose
    ``max(|x|, |y|)`` exceeds ``DISCARD_MARGIN`` are masked out.
    """
    win_w, win_h = window_size if window_size is not None else (width, height)
    scale = float(min(win_w, win_h))
    x = (2.0 * (np.arange(width) + 0.5) - win_w) / scale
    y = (win_h - 2.0 * (np.arange(height) + 0.5)) / scale
    xx, yy = np.meshgrid(x, y)
    return xx, yy, ~is_discarded(xx, yy)


@lru_cache(maxsize=4)
def _cell_layout(width, height, win_w, win_h):
    """Kept pixels grouped by grid cell: (flat idx, x, y, cell bounds)."""
    xx, yy, keep = pixel_positions(width, height, (win_w, win_h))
    flat = np.flatnonzero(keep)
    cells = cell_index(xx.ravel()[flat], yy.ravel()[flat])
    order = np.argsort(cells, kind='stable')
    flat = flat[order]
    bounds = np.concatenate(
        [[0], np.cumsum(np.bincount(cells, minlength=CHUNK_COUNT))])
    return flat, xx.ravel()[flat], yy.ravel()[flat], bounds


# ────────────────── The fold ──────────────────

def fold_segments(x, y, prev, lines, total_time, config: ScopeConfig):
    """Run the decay/excitation fold for pixels at ``(x, y)``.

    ``lines`` must already be the pixels' chunk run, in time order.
    Returns the clamped brightness as float64.
    """
    nxt = np.array(prev, dtype=np.float64)
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    decay = np.float64(config.decay)
    sigma = np.float64(config.sigma)
    intensity = np.float64(config.intensity)
    norm_sigma = NORM_K * sigma

    starts = np.asarray(lines['start'], dtype=np.float64)
    vs = np.asarray(lines['v'], dtype=np.float64)
    times = np.asarray(lines['time'], dtype=np.float64)

    t = 0.0
    with np.errstate(over='ignore', under='ignore',
                     divide='ignore', invalid='ignore'):
        for i in range(len(times)):
            nxt *= decay ** (times[i] - t)
            t = times[i]

            sx, sy = starts[i]
            vx, vy = vs[i]
            ux = x - sx
            uy = y - sy
            vv = vx * vx + vy * vy
            if vv != 0.0:
                proj = np.clip((ux * vx + uy * vy) / vv, 0.0, 1.0)
                ux = ux - proj * vx
                uy = uy - proj * vy
            d = np.sqrt(ux * ux + uy * uy)

            contrib = excitation(d, sigma, intensity) / (
                norm_sigma + math.sqrt(vv))
            nxt += np.where(np.isfinite(contrib), contrib, 0.0)

        nxt *= decay ** (np.float64(total_time) - t)
    np.clip(nxt, 0.0, BRIGHTNESS_MAX, out=nxt)
    return nxt


def accumulate(prev, frame: Frame, config: ScopeConfig,
               out=None, display=None, executor=None):
    """One full kernel pass: ``prev`` → ``out`` (+ ``display`` colour).

    Discarded pixels are left untouched in ``out`` and ``display``.
    ``out`` must not share memory with ``prev``.
    """
    prev = np.asarray(prev, dtype=np.float32)
    h, w = prev.shape
    if out is None:
        out = np.zeros_like(prev)
    elif np.shares_memory(out, prev):
        raise ValueError("next buffer aliases the previous buffer")
    if out.shape != prev.shape:
        raise ValueError("buffer shapes differ: %r vs %r"
                         % (out.shape, prev.shape))
    # reshape() of a strided view is a copy and would drop the writes
    for name, buf in (("next", out), ("display", display)):
        if buf is not None and not buf.flags['C_CONTIGUOUS']:
            raise ValueError("%s buffer must be C-contiguous" % name)

    win_w, win_h = config.window_size
    flat, px, py, bounds = _cell_layout(w, h, float(win_w), float(win_h))
    prev_flat = prev.ravel()
    out_flat = out.reshape(-1)
    disp_flat = None if display is None else display.reshape(-1, 4)
    n_lines = frame.n_lines

    def _run_cell(cell):
        lo, hi = bounds[cell], bounds[cell + 1]
        if lo == hi:
            return
        offset, size = frame.chunk_range(cell)
        # out-of-range tables are a builder bug; clip rather than crash
        start = min(offset, n_lines)
        stop = min(offset + size, n_lines)
        idx = flat[lo:hi]
        nxt = fold_segments(px[lo:hi], py[lo:hi], prev_flat[idx],
                            frame.lines[start:stop], frame.total_time,
                            config)
        out_flat[idx] = nxt
        if disp_flat is not None:
            disp_flat[idx] = tone_map(nxt)

    cells = [c for c in range(CHUNK_COUNT) if bounds[c + 1] > bounds[c]]
    if executor is None:
        for cell in cells:
            _run_cell(cell)
    else:
        # list() re-raises the first worker exception
        list(executor.map(_run_cell, cells))
    return out


# ────────────────── Ping-pong pair ──────────────────

class FrameBufferPair:
    """Two brightness buffers whose roles swap after every pass.

    ``front`` holds the latest completed frame and is read as "previous"
    by the next pass; ``back`` is written.  ``display`` is the RGBA
    preview of ``front``.
    """

    def __init__(self, width, height):
        self.width = int(width)
        self.height = int(height)
        self.front = np.zeros((self.height, self.width), dtype=np.float32)
        self.back = np.zeros((self.height, self.width), dtype=np.float32)
        self.display = np.zeros(
            (self.height, self.width, 4), dtype=np.float32)

    @property
    def size(self):
        return self.width, self.height

    def swap(self):
        self.front, self.back = self.back, self.front
