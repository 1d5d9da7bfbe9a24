# =============================
# Renderer: display blit, screenshots
# =============================
"""
Puts the scope's display buffer on screen with a fullscreen triangle.

With the GPU backend the display image is sampled in place; with the
CPU backend the RGBA array is uploaded into a texture of our own first.
The ``Renderer`` never runs the phosphor kernel itself.
"""

import logging
import os
from datetime import datetime

import numpy as np
import cv2
import moderngl
import glfw

from shaders import FULLSCREEN_VERTEX_SHADER, DISPLAY_FRAGMENT_SHADER

log = logging.getLogger(__name__)

_GL_ERROR_DRAIN = 32


class Renderer:
    """OpenGL presentation of the phosphor display buffer."""

    def __init__(self, ctx: moderngl.Context, bg_color=(0.0, 0.0, 0.0)):
        self.ctx = ctx
        self.bg_color = tuple(bg_color)
        self.prog = ctx.program(
            vertex_shader=FULLSCREEN_VERTEX_SHADER,
            fragment_shader=DISPLAY_FRAGMENT_SHADER)
        self._vao = ctx.vertex_array(self.prog, [])  # positions from gl_VertexID
        self._upload_tex = None

    def _cpu_texture(self, rgba):
        """Copy a CPU display buffer into the (re)sized upload texture."""
        h, w = rgba.shape[:2]
        tex = self._upload_tex
        if tex is None or tex.size != (w, h):
            if tex is not None:
                tex.release()
            tex = self.ctx.texture((w, h), 4, dtype='f4')
            tex.filter = (moderngl.LINEAR, moderngl.LINEAR)
            self._upload_tex = tex
        tex.write(np.ascontiguousarray(rgba, dtype=np.float32))
        return tex

    def render(self, w, h, scope):
        """Blit the latest display buffer to the default framebuffer."""
        ctx = self.ctx
        ctx.screen.use()
        ctx.viewport = (0, 0, w, h)
        ctx.disable(moderngl.DEPTH_TEST)
        ctx.clear(*self.bg_color)

        tex = getattr(scope.backend, "display_tex", None)
        if tex is None:
            tex = self._cpu_texture(scope.display())
        tex.use(location=0)
        self.prog['display_tex'].value = 0
        self.prog['bg_color'].value = self.bg_color
        self._vao.render(moderngl.TRIANGLES, vertices=3)

    # ────────────────── Screenshots ──────────────────

    def capture_screenshot(self, window):
        """Framebuffer → BGR uint8 array, top row first.

        Must run before imgui draws so the panel is not in the shot.
        """
        w, h = glfw.get_framebuffer_size(window)
        raw = self.ctx.screen.read(
            viewport=(0, 0, w, h), components=3, alignment=1)
        if len(raw) != w * h * 3:
            log.error("Screenshot read %d bytes, expected %d for %dx%d",
                      len(raw), w * h * 3, w, h)
            return None
        rgb = np.frombuffer(raw, dtype=np.uint8).reshape((h, w, 3))[::-1]
        return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)

    @staticmethod
    def gl_reset_state():
        """Clear errors and bindings left by ``ctx.screen.read()``.

        The imgui GL3 renderer checks ``glGetError`` and would trip over
        a stale error from the read-back.
        """
        from OpenGL import GL as gl

        get_error = getattr(gl.glGetError, "wrappedOperation", gl.glGetError)
        for _ in range(_GL_ERROR_DRAIN):
            if get_error() == gl.GL_NO_ERROR:
                break

        resets = (
            (gl.glBindFramebuffer, (gl.GL_FRAMEBUFFER, 0)),
            (gl.glBindTexture, (gl.GL_TEXTURE_2D, 0)),
            (gl.glBindVertexArray, (0,)),
            (gl.glUseProgram, (0,)),
        )
        for fn, args in resets:
            try:
                fn(*args)
            except Exception as e:
                log.debug("GL state reset failed: %s", e)

    @staticmethod
    def save_screenshot_to_disk(img, screenshots_dir):
        """Write a captured frame as PNG; runs off the GL thread."""
        if img is None:
            return
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")[:-3]
        path = os.path.join(screenshots_dir, f"glowie_{stamp}.png")
        if cv2.imwrite(path, img):
            log.info("Screenshot %s (%dx%d)", path, img.shape[1], img.shape[0])
        else:
            log.error("Screenshot not written: %s", path)

    def release(self):
        if self._upload_tex is not None:
            self._upload_tex.release()
            self._upload_tex = None
        self._vao.release()
        self.prog.release()
