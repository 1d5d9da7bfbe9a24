# =============================
# ChunkBuilder: samples → segments → 16×16 chunk index
# =============================
"""
Host-side preprocessing run once per frame before the kernel pass.

Consecutive X/Y samples become line segments (one per sample pair,
timestamped in sample periods).  Each segment is assigned to every grid
cell whose centre lies within ``reach`` of it, so a pixel only has to
walk the segments listed for its own cell.  Lines are laid out cell by
cell, each cell's run in time order, and the ``(offset, size)`` of every
run is written to the chunk table.

The last consumed sample is kept so the next frame's path starts where
this one ended.
"""

import logging

import numpy as np

from config import CHUNK_COUNT, CHUNK_REACH, MAX_LINES
from scope_types import Frame, LINE_DTYPE, chunk_centers

log = logging.getLogger(__name__)

_CENTERS = chunk_centers()
_BLOCK = 4096  # segments per membership block


def segment_distances(starts, vs, points):
    """Clamped-projection distance from every point to every segment.

    ``starts``/``vs``: ``(n, 2)``; ``points``: ``(m, 2)``.  Returns
    ``(n, m)``.  Zero-length segments measure the distance to ``start``.
    """
    u = points[None, :, :] - starts[:, None, :]              # (n, m, 2)
    vv = np.einsum('ij,ij->i', vs, vs)[:, None]              # (n, 1)
    uv = np.einsum('nmk,nk->nm', u, vs)                      # (n, m)
    with np.errstate(divide='ignore', invalid='ignore'):
        proj = np.where(vv != 0.0, uv / vv, 0.0)
    proj = np.clip(proj, 0.0, 1.0)
    disp = u - proj[:, :, None] * vs[:, None, :]
    return np.sqrt(np.einsum('nmk,nmk->nm', disp, disp))


class ChunkBuilder:
    """Buffers incoming samples and turns them into per-frame chunk data."""

    def __init__(self, reach=CHUNK_REACH, max_lines=MAX_LINES):
        if max_lines <= CHUNK_COUNT:
            raise ValueError("max_lines must exceed %d, got %d"
                             % (CHUNK_COUNT, max_lines))
        self.reach = float(reach)
        self.max_lines = int(max_lines)
        self._samples = np.zeros((1, 2), dtype=np.float32)

    @property
    def pending(self):
        """Number of segments waiting to be built."""
        return max(len(self._samples) - 1, 0)

    def extend(self, samples):
        samples = np.asarray(samples, dtype=np.float32)
        if samples.size == 0:
            return
        if samples.ndim != 2 or samples.shape[1] != 2:
            raise ValueError("samples must have shape (N, 2), got %r"
                             % (samples.shape,))
        self._samples = np.concatenate([self._samples, samples])

    def reset(self):
        self._samples = self._samples[-1:].copy()

    def build(self) -> Frame:
        """Consume buffered samples and return this frame's ``Frame``."""
        samples = self._samples
        if len(samples) < 2:
            return Frame()

        starts = samples[:-1]
        vs = samples[1:] - samples[:-1]
        limit = self.max_lines - CHUNK_COUNT

        # (n_segments, 256) membership mask, built in blocks so a long
        # backlog doesn't materialise one huge distance matrix.
        blocks = []
        total = 0
        batch = 0
        for lo in range(0, len(starts), _BLOCK):
            hi = min(lo + _BLOCK, len(starts))
            block = segment_distances(
                starts[lo:hi], vs[lo:hi], _CENTERS) < self.reach
            running = total + np.cumsum(block.sum(axis=1))
            over = np.flatnonzero(running > limit)
            if len(over):
                # the segment that crosses the limit is still taken
                cut = int(over[0]) + 1
                blocks.append(block[:cut])
                batch = lo + cut
                break
            blocks.append(block)
            total = int(running[-1]) if len(running) else total
            batch = hi
        member = np.concatenate(blocks)
        if batch < len(starts):
            log.debug("Line buffer full: %d of %d segments this frame",
                      batch, len(starts))

        # Chunk-major walk keeps each chunk's lines in time order
        chunk_idx, seg_idx = np.nonzero(member.T)
        sizes = np.bincount(chunk_idx, minlength=CHUNK_COUNT)

        lines = np.empty(len(seg_idx), dtype=LINE_DTYPE)
        lines['start'] = starts[seg_idx]
        lines['v'] = vs[seg_idx]
        lines['time'] = seg_idx.astype(np.float32)

        chunks = np.empty((CHUNK_COUNT, 2), dtype=np.uint32)
        chunks[:, 1] = sizes
        chunks[:, 0] = np.concatenate([[0], np.cumsum(sizes)[:-1]])

        self._samples = samples[batch:].copy()
        return Frame(lines=lines, chunks=chunks, total_time=float(batch))
