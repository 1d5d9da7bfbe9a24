# =============================
# GPUPipeline: phosphor compute pass, ping-pong R32F images
# =============================
"""
Owns the OpenGL 4.3+ compute pass that runs the phosphor kernel on the
GPU:

    Config UBO + Lines SSBO + prev image → compute shader → next image
                                                          → display image

Two R32F textures are used in ping-pong fashion: the pass reads one as
"previous" and writes the other, then their roles are swapped.  A single
image is never bound for reading and writing in the same dispatch.

Same interface as ``scope.CpuBackend`` so ``Scope`` can drive either.
"""

import logging

import numpy as np
import moderngl

from config import BRIGHTNESS_MAX, DISCARD_MARGIN, MAX_LINES, NORM_K
from scope_types import (
    GPU_LINE_DTYPE, UNIFORM_BLOCK_SIZE, Frame, ScopeConfig,
    pack_uniforms, quantize_lines,
)
from shaders import PHOSPHOR_COMPUTE_SHADER

log = logging.getLogger(__name__)

_GROUP = 16  # local_size_x / local_size_y

# Image writes must be visible to the next pass's imageLoad and to the
# texture() fetch in the display blit.
_IMAGE_BARRIER = (
    0x00000020    # GL_SHADER_IMAGE_ACCESS_BARRIER_BIT
    | 0x00000008  # GL_TEXTURE_FETCH_BARRIER_BIT
    | 0x00000100  # GL_TEXTURE_UPDATE_BARRIER_BIT (readback)
)


class GPUPipeline:
    """GPU compute backend for the phosphor kernel."""

    name = "gpu"

    def __init__(self, ctx: moderngl.Context, width, height):
        self.ctx = ctx

        # ── Compute shader ──
        try:
            self._compute = ctx.compute_shader(PHOSPHOR_COMPUTE_SHADER)
        except Exception as e:
            log.warning("Phosphor compute shader unavailable "
                        "(OpenGL 4.3+ required): %s", e)
            raise RuntimeError("GPU phosphor pipeline unavailable") from e

        self._compute['norm_k'].value = float(NORM_K)
        self._compute['discard_margin'].value = float(DISCARD_MARGIN)
        self._compute['brightness_max'].value = float(BRIGHTNESS_MAX)

        # ── Config UBO + line SSBO ──
        self.config_buf = ctx.buffer(reserve=UNIFORM_BLOCK_SIZE)
        self.line_buf = ctx.buffer(reserve=MAX_LINES * GPU_LINE_DTYPE.itemsize)

        # ── Brightness images (double-buffered) + display image ──
        self._brightness = [None, None]
        self._read = 0
        self._write = 1
        self.display_tex = None
        self._size = (0, 0)
        self.resize(width, height)

        log.info("GPU phosphor pipeline: OK (%dx%d)", width, height)

    # ────────────────── Texture management ──────────────────

    @property
    def size(self):
        return self._size

    def resize(self, width, height):
        """Recreate the images; brightness restarts from zero."""
        width, height = int(width), int(height)
        if self._size == (width, height):
            return
        self._release_textures()

        zeros = np.zeros((height, width), dtype=np.float32)
        for i in range(2):
            tex = self.ctx.texture((width, height), 1, dtype='f4')
            tex.filter = (moderngl.NEAREST, moderngl.NEAREST)
            tex.write(zeros)
            self._brightness[i] = tex

        self.display_tex = self.ctx.texture((width, height), 4, dtype='f4')
        self.display_tex.filter = (moderngl.LINEAR, moderngl.LINEAR)
        self.display_tex.write(np.zeros((height, width, 4), dtype=np.float32))

        self._read, self._write = 0, 1
        self._size = (width, height)

    # ────────────────── Frame processing ──────────────────

    def upload(self, frame: Frame, config: ScopeConfig):
        lines = frame.lines
        if len(lines) > MAX_LINES:
            log.warning("Frame has %d lines, only %d fit the line buffer",
                        len(lines), MAX_LINES)
            lines = lines[:MAX_LINES]
        self.config_buf.write(pack_uniforms(config, frame))
        if len(lines):
            self.line_buf.write(quantize_lines(lines).tobytes())

    def run(self, frame: Frame, config: ScopeConfig):
        """Upload, dispatch one pass over every pixel, swap."""
        self.upload(frame, config)

        self.config_buf.bind_to_uniform_block(0)
        self.line_buf.bind_to_storage_buffer(0)
        self._brightness[self._read].bind_to_image(0, read=True, write=False)
        self._brightness[self._write].bind_to_image(1, read=False, write=True)
        self.display_tex.bind_to_image(2, read=False, write=True)

        w, h = self._size
        self._compute.run((w + _GROUP - 1) // _GROUP,
                          (h + _GROUP - 1) // _GROUP)
        self.ctx.memory_barrier(barriers=_IMAGE_BARRIER)

        self._read, self._write = self._write, self._read

    # ────────────────── Readback ──────────────────

    def brightness(self):
        """Latest brightness as ``(h, w)`` float32 (stalls the pipeline)."""
        w, h = self._size
        raw = self._brightness[self._read].read()
        return np.frombuffer(raw, dtype=np.float32).reshape((h, w)).copy()

    def display(self):
        w, h = self._size
        raw = self.display_tex.read()
        return np.frombuffer(raw, dtype=np.float32).reshape((h, w, 4)).copy()

    def load_brightness(self, data):
        """Seed the "previous" image, e.g. to restore a saved frame."""
        w, h = self._size
        data = np.ascontiguousarray(data, dtype=np.float32)
        if data.shape != (h, w):
            raise ValueError("expected shape %r, got %r"
                             % ((h, w), data.shape))
        self._brightness[self._read].write(data)

    # ────────────────── Cleanup ──────────────────

    def _release_textures(self):
        for i, tex in enumerate(self._brightness):
            if tex is not None:
                tex.release()
                self._brightness[i] = None
        if self.display_tex is not None:
            self.display_tex.release()
            self.display_tex = None

    def release(self):
        """Release all GPU resources."""
        self._release_textures()
        for buf in (self.config_buf, self.line_buf):
            if buf is not None:
                buf.release()
        self._compute.release()
