# =============================
# Scope data model: segments, chunk table, kernel config
# =============================
"""
Plain data shared by the chunk builder, the numpy reference kernel and
the GPU pipeline.

Segments live in a numpy structured array (``LINE_DTYPE``), one record
per increment of beam travel.  The chunk table is a ``(256, 2)`` array of
``(offset, size)`` ranges into that array, one row per cell of the 16×16
grid, flat index ``cy * 16 + cx``.

For upload, segments are quantised to ``GPU_LINE_DTYPE`` (2×16-bit
signed normalised start / displacement, float time, 12 bytes) and the
config + chunk table are packed into the std140 ``Config`` uniform block
read by ``PHOSPHOR_COMPUTE_SHADER``.
"""

import struct
from dataclasses import dataclass, field
from typing import Tuple

import numpy as np

from config import (
    CHUNK_GRID, CHUNK_COUNT,
    DECAY_RANGE, SIGMA_RANGE, INTENSITY_RANGE,
    DEFAULT_LINE_RADIUS, DEFAULT_DECAY, DEFAULT_SIGMA, DEFAULT_INTENSITY,
    WINDOW_W, WINDOW_H,
)

LINE_DTYPE = np.dtype([
    ('start', '<f4', (2,)),
    ('v', '<f4', (2,)),
    ('time', '<f4'),
])

GPU_LINE_DTYPE = np.dtype([
    ('start', '<u4'),   # 2x16snorm
    ('v', '<u4'),       # 2x16snorm
    ('time', '<f4'),
])

# std140: uvec4 chunks[64]; vec2 window_size; float ×5; pad to 16
_UNIFORM_FMT = '<%dI2f5f4x' % CHUNK_COUNT
UNIFORM_BLOCK_SIZE = struct.calcsize(_UNIFORM_FMT)


# ────────────────── snorm / u16 packing ──────────────────

def pack16snorm(e):
    """float in [-1, 1] → 16-bit signed normalised, as uint16 bits."""
    e = np.clip(np.asarray(e, dtype=np.float32), -1.0, 1.0)
    return np.floor(0.5 + 32767.0 * e).astype(np.int16).view(np.uint16)


def unpack16snorm(bits):
    s = np.asarray(bits, dtype=np.uint16).view(np.int16).astype(np.float32)
    return np.clip(s / 32767.0, -1.0, 1.0)


def pack2x16snorm(xy):
    """``(..., 2)`` floats → uint32 with x in the low half (GLSL order)."""
    xy = np.asarray(xy, dtype=np.float32)
    lo = pack16snorm(xy[..., 0]).astype(np.uint32)
    hi = pack16snorm(xy[..., 1]).astype(np.uint32)
    return lo | (hi << np.uint32(16))


def unpack2x16snorm(packed):
    packed = np.asarray(packed, dtype=np.uint32)
    lo = (packed & np.uint32(0xFFFF)).astype(np.uint16)
    hi = (packed >> np.uint32(16)).astype(np.uint16)
    return np.stack([unpack16snorm(lo), unpack16snorm(hi)], axis=-1)


def pack2xu16(offset, size):
    offset = np.asarray(offset, dtype=np.uint32) & np.uint32(0xFFFF)
    size = np.asarray(size, dtype=np.uint32) & np.uint32(0xFFFF)
    return offset | (size << np.uint32(16))


# ────────────────── Segments ──────────────────

def make_lines(starts, vs, times):
    """Build a ``LINE_DTYPE`` array from parallel start/v/time arrays."""
    starts = np.asarray(starts, dtype=np.float32).reshape(-1, 2)
    vs = np.asarray(vs, dtype=np.float32).reshape(-1, 2)
    times = np.asarray(times, dtype=np.float32).reshape(-1)
    if not (len(starts) == len(vs) == len(times)):
        raise ValueError("start, v and time must have the same length "
                         "(%d, %d, %d)" % (len(starts), len(vs), len(times)))
    lines = np.empty(len(starts), dtype=LINE_DTYPE)
    lines['start'] = starts
    lines['v'] = vs
    lines['time'] = times
    return lines


def quantize_lines(lines):
    """``LINE_DTYPE`` → ``GPU_LINE_DTYPE`` (what the shader sees)."""
    out = np.empty(len(lines), dtype=GPU_LINE_DTYPE)
    out['start'] = pack2x16snorm(lines['start'])
    out['v'] = pack2x16snorm(lines['v'])
    out['time'] = lines['time']
    return out


def dequantize_lines(packed):
    out = np.empty(len(packed), dtype=LINE_DTYPE)
    out['start'] = unpack2x16snorm(packed['start'])
    out['v'] = unpack2x16snorm(packed['v'])
    out['time'] = packed['time']
    return out


# ────────────────── Chunk index ──────────────────

def cell_coords(x, y):
    """Grid cell ``(cx, cy)`` for positions in the aspect-corrected square."""
    cx = np.clip(np.floor(CHUNK_GRID / 2 * (np.asarray(x) + 1.0)),
                 0, CHUNK_GRID - 1).astype(np.intp)
    cy = np.clip(np.floor(CHUNK_GRID / 2 * (np.asarray(y) + 1.0)),
                 0, CHUNK_GRID - 1).astype(np.intp)
    return cx, cy


def cell_index(x, y):
    cx, cy = cell_coords(x, y)
    return cy * CHUNK_GRID + cx


def chunk_centers():
    """``(256, 2)`` cell centres in flat-index order."""
    idx = np.arange(CHUNK_COUNT)
    cx = idx % CHUNK_GRID
    cy = idx // CHUNK_GRID
    half = CHUNK_GRID / 2
    return np.stack([(cx - (half - 0.5)) / half,
                     (cy - (half - 0.5)) / half], axis=1).astype(np.float32)


def empty_chunks():
    return np.zeros((CHUNK_COUNT, 2), dtype=np.uint32)


# ────────────────── Kernel config / frame ──────────────────

@dataclass(frozen=True)
class ScopeConfig:
    """Process-wide kernel parameters, immutable during a pass."""
    window_size: Tuple[float, float] = (float(WINDOW_W), float(WINDOW_H))
    line_radius: float = DEFAULT_LINE_RADIUS
    decay: float = DEFAULT_DECAY
    sigma: float = DEFAULT_SIGMA
    intensity: float = DEFAULT_INTENSITY

    def __post_init__(self):
        # the shader reads decay as float32
        if not (0.0 < self.decay and np.float32(self.decay) < 1.0):
            raise ValueError("decay must be in (0, 1), got %r" % (self.decay,))
        if not self.sigma > 0.0:
            raise ValueError("sigma must be > 0, got %r" % (self.sigma,))
        if not self.intensity >= 0.0:
            raise ValueError(
                "intensity must be >= 0, got %r" % (self.intensity,))
        w, h = self.window_size
        if w <= 0 or h <= 0:
            raise ValueError("window_size must be positive, got %r"
                             % (self.window_size,))

    @classmethod
    def from_settings(cls, s, window_size):
        """Clamp runtime settings into the accepted ranges."""
        def _clamp(v, rng):
            return min(max(float(v), rng[0]), rng[1])
        return cls(
            window_size=(float(window_size[0]), float(window_size[1])),
            line_radius=float(s["line_radius"]),
            decay=_clamp(s["decay"], DECAY_RANGE),
            sigma=_clamp(s["sigma"], SIGMA_RANGE),
            intensity=_clamp(s["intensity"], INTENSITY_RANGE),
        )


@dataclass
class Frame:
    """Per-frame kernel input: time-ordered segments + chunk index."""
    lines: np.ndarray = field(
        default_factory=lambda: np.empty(0, dtype=LINE_DTYPE))
    chunks: np.ndarray = field(default_factory=empty_chunks)
    total_time: float = 0.0

    @property
    def n_lines(self):
        return len(self.lines)

    def chunk_range(self, i):
        offset, size = self.chunks[i]
        return int(offset), int(size)


def pack_uniforms(config: ScopeConfig, frame: Frame) -> bytes:
    """Pack the std140 ``Config`` block (chunk ``i`` → ``chunks[i>>2][i&3]``)."""
    packed = pack2xu16(frame.chunks[:, 0], frame.chunks[:, 1])
    return struct.pack(
        _UNIFORM_FMT,
        *packed.tolist(),
        float(config.window_size[0]), float(config.window_size[1]),
        float(config.line_radius), float(config.decay),
        float(config.sigma), float(config.intensity),
        float(frame.total_time),
    )
