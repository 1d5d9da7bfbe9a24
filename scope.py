# =============================
# Scope: frame driver
# =============================
"""
Glues the per-frame steps together::

    samples → ChunkBuilder.build() → Frame → backend.run() → swap

The backend is either ``GPUPipeline`` (compute shader) or ``CpuBackend``
(numpy reference kernel).  Both own a ping-pong brightness pair, so
frame N's output is frame N+1's input and a skipped ``step()`` leaves
the buffers exactly as they were.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import cv2
import numpy as np

from config import settings
from chunking import ChunkBuilder
from phosphor import FrameBufferPair, accumulate
from scope_types import Frame, ScopeConfig

log = logging.getLogger(__name__)


class CpuBackend:
    """numpy backend with the same interface as ``GPUPipeline``."""

    name = "cpu"

    def __init__(self, width, height, workers=0):
        self._pool = (ThreadPoolExecutor(max_workers=workers,
                                         thread_name_prefix="phosphor")
                      if workers > 0 else None)
        self._buffers = FrameBufferPair(width, height)

    @property
    def size(self):
        return self._buffers.size

    def resize(self, width, height):
        if self._buffers.size == (int(width), int(height)):
            return
        self._buffers = FrameBufferPair(width, height)

    def run(self, frame: Frame, config: ScopeConfig):
        b = self._buffers
        accumulate(b.front, frame, config, out=b.back,
                   display=b.display, executor=self._pool)
        b.swap()

    def brightness(self):
        return self._buffers.front.copy()

    def display(self):
        return self._buffers.display.copy()

    def load_brightness(self, data):
        data = np.asarray(data, dtype=np.float32)
        if data.shape != self._buffers.front.shape:
            raise ValueError("expected shape %r, got %r"
                             % (self._buffers.front.shape, data.shape))
        self._buffers.front[...] = data

    def release(self):
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None


class Scope:
    """Phosphor oscilloscope: sample buffer + kernel backend."""

    def __init__(self, backend, builder=None):
        self.backend = backend
        self.builder = builder if builder is not None else ChunkBuilder()
        self.frames = 0

    @property
    def size(self):
        return self.backend.size

    def extend(self, samples):
        self.builder.extend(samples)

    def config(self, s=None):
        return ScopeConfig.from_settings(
            settings if s is None else s, self.backend.size)

    def step(self, config: ScopeConfig = None) -> Frame:
        """Advance one frame with every buffered sample."""
        if config is None:
            config = self.config()
        frame = self.builder.build()
        self.backend.run(frame, config)
        self.frames += 1
        return frame

    def window_resized(self, width, height):
        if width < 1 or height < 1:
            return
        if self.backend.size != (width, height):
            log.info("Scope resized: %dx%d → %dx%d",
                     *self.backend.size, width, height)
        self.backend.resize(width, height)

    def brightness(self):
        return self.backend.brightness()

    def display(self):
        return self.backend.display()

    # ────────────────── PNG export ──────────────────

    def export_png(self, exports_dir):
        """Save the current display buffer as an 8-bit PNG.

        Returns the written path, or ``None`` on failure.
        """
        try:
            rgba = self.display()
            rgb = np.clip(rgba[..., :3] * 255.0, 0, 255).astype(np.uint8)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")[:-3]
            os.makedirs(exports_dir, exist_ok=True)
            path = os.path.join(exports_dir, f"glowie_{timestamp}.png")
            if not cv2.imwrite(path, cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)):
                log.error("PNG export failed: %s", path)
                return None
            log.info("PNG exported: %s (%dx%d)",
                     path, rgb.shape[1], rgb.shape[0])
            return path
        except Exception as e:
            log.error("PNG export error: %s", e)
            return None

    def release(self):
        self.backend.release()
