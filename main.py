# =============================
# Glowie: phosphor oscilloscope viewer
# =============================
"""
Entry point.  The work is split into focused modules:

  ``app_state.py``     ``AppState`` dataclass
  ``signal_source.py`` X/Y sample producers
  ``chunking.py``      ``ChunkBuilder`` (segments + 16×16 chunk index)
  ``phosphor.py``      numpy reference kernel, ``FrameBufferPair``
  ``gpu_pipeline.py``  ``GPUPipeline`` (phosphor compute shader)
  ``scope.py``         ``Scope`` frame driver, ``CpuBackend``
  ``renderer.py``      ``Renderer`` (display blit, screenshots)
  ``ui_manager.py``    ``UIManager`` (ImGui panels, presets)

Only the ``Application`` shell lives here: it opens the window, owns the
subsystems and runs the frame loop.
"""

import argparse
import logging
import os
import threading
import time

import glfw
import moderngl
import imgui
from imgui.integrations.glfw import GlfwRenderer

from config import (
    WINDOW_W, WINDOW_H, WINDOW_TITLE, TARGET_FPS, settings,
)
from app_state import AppState
from signal_source import LissajousSource, load_source
from gpu_pipeline import GPUPipeline
from scope import CpuBackend, Scope
from renderer import Renderer
from ui_manager import UIManager
from perf_metrics import PerfMetrics

log = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO,
                    format="%(asctime)s [%(levelname)s] %(message)s")

# ── Output folders (next to this file) ──
_ROOT = os.path.dirname(os.path.abspath(__file__))
_PRESETS_DIR = os.path.join(_ROOT, "presets")
_SCREENSHOTS_DIR = os.path.join(_ROOT, "screenshots")
_EXPORTS_DIR = os.path.join(_ROOT, "exports")

_FRAME_BUDGET = 1.0 / TARGET_FPS
_SPIN_WINDOW = 0.0015  # busy-wait for the last 1.5 ms of the budget
_FLASH_SECONDS = 0.15


def _open_window(gl_version):
    major, minor = gl_version
    glfw.window_hint(glfw.CONTEXT_VERSION_MAJOR, major)
    glfw.window_hint(glfw.CONTEXT_VERSION_MINOR, minor)
    glfw.window_hint(glfw.OPENGL_PROFILE, glfw.OPENGL_CORE_PROFILE)
    glfw.window_hint(glfw.OPENGL_FORWARD_COMPAT, True)
    glfw.window_hint(glfw.DECORATED, False)
    return glfw.create_window(WINDOW_W, WINDOW_H, WINDOW_TITLE, None, None)


class Application:
    """Window, GL context and the scope loop."""

    def __init__(self, force_cpu=False, samples_path=None):
        for folder in (_PRESETS_DIR, _SCREENSHOTS_DIR, _EXPORTS_DIR):
            os.makedirs(folder, exist_ok=True)

        self.state = AppState()
        self.source = self._make_source(samples_path)

        if not glfw.init():
            log.critical("GLFW init failed")
            raise SystemExit(1)

        # Compute shaders need 4.3; a 3.3 context still runs the CPU kernel
        self.window = _open_window((4, 3))
        if not self.window:
            log.warning("OpenGL 4.3 context unavailable, trying 3.3 "
                        "with the CPU backend")
            self.window = _open_window((3, 3))
            force_cpu = True
        if not self.window:
            log.critical("Window creation failed")
            glfw.terminate()
            raise SystemExit(1)

        glfw.make_context_current(self.window)
        self._vsync = settings["vsync"]
        glfw.swap_interval(self._vsync)
        self.ctx = moderngl.create_context()

        imgui.create_context()
        self.impl = GlfwRenderer(self.window)

        # GL objects exist from here on; release them if anything fails
        try:
            fb_w, fb_h = glfw.get_framebuffer_size(self.window)
            self.scope = Scope(self._make_backend(fb_w, fb_h, force_cpu))
            self.state.backend_name = self.scope.backend.name
            self.renderer = Renderer(self.ctx)
            self.metrics = PerfMetrics(self.ctx)
            self.ui = UIManager(_PRESETS_DIR, _EXPORTS_DIR)
            self.ui.refresh_presets(self.state)
            glfw.set_framebuffer_size_callback(
                self.window, self._on_framebuffer_resize)
        except Exception:
            log.exception("Application init failed, releasing GL resources")
            self._cleanup()
            raise

    @staticmethod
    def _make_source(samples_path):
        if samples_path:
            return load_source(samples_path)
        source = LissajousSource()
        source.update(settings)
        return source

    def _make_backend(self, w, h, force_cpu):
        if not force_cpu:
            try:
                return GPUPipeline(self.ctx, w, h)
            except RuntimeError as e:
                log.warning("Falling back to CPU backend: %s", e)
        workers = int(settings["cpu_workers"])
        log.info("CPU phosphor backend (%d workers)", workers)
        return CpuBackend(w, h, workers=workers)

    def _on_framebuffer_resize(self, _window, w, h):
        self.scope.window_resized(w, h)

    # ────────────────────── Frame loop ──────────────────────

    def run(self):
        try:
            while not glfw.window_should_close(self.window):
                if not self._frame():
                    break
        finally:
            self._cleanup()

    def _frame(self):
        """One iteration of the loop.  Returns False to quit."""
        s = self.state
        m = self.metrics
        now = time.perf_counter()
        dt = now - s.prev_frame_time
        s.prev_frame_time = now
        m.begin_frame()
        s.tick_fps(now)

        m.begin("events")
        glfw.poll_events()
        self.impl.process_inputs()
        quit_requested = (
            glfw.get_key(self.window, glfw.KEY_ESCAPE) == glfw.PRESS)
        if not quit_requested:
            self._handle_hotkeys()
        m.end("events")
        if quit_requested:
            return False

        w, h = glfw.get_framebuffer_size(self.window)
        if w < 1 or h < 1:
            return True  # minimised

        self._advance_scope(now)

        m.begin("render")
        m.begin_gpu("render")
        self.renderer.render(w, h, self.scope)
        m.end_gpu("render")
        m.end("render")

        if s.screenshot_requested:
            self._grab_screenshot()

        m.begin("imgui")
        imgui.new_frame()
        self.ui.draw(s, self.scope, self.source, now, m)
        imgui.render()
        self.impl.render(imgui.get_draw_data())
        m.end("imgui")

        m.begin("swap")
        glfw.swap_buffers(self.window)
        m.end("swap")

        self._sync_vsync()
        self._pace(now)
        self._flush_screenshot()
        if s.screenshot_flash > 0:
            s.screenshot_flash = max(s.screenshot_flash - dt, 0.0)

        m.end_frame()
        return True

    def _advance_scope(self, now):
        """Pull due samples from the source and run one kernel pass."""
        s = self.state
        m = self.metrics
        m.begin("source")
        samples = self.source.read(now)
        m.end("source")
        if s.paused:
            return

        self.scope.extend(samples)
        s.samples_last_frame = len(samples)
        m.begin("kernel")
        m.begin_gpu("kernel")
        frame = self.scope.step()
        m.end_gpu("kernel")
        m.end("kernel")
        s.lines_last_frame = frame.n_lines

    def _grab_screenshot(self):
        # Read the framebuffer before imgui draws over it
        s = self.state
        s.screenshot_requested = False
        try:
            s.screenshot_data = self.renderer.capture_screenshot(self.window)
        except Exception as e:
            log.error("Screenshot capture error: %s", e)
            s.screenshot_data = None
        s.screenshot_flash = _FLASH_SECONDS
        self.renderer.gl_reset_state()

    def _flush_screenshot(self):
        """Encode and write a captured screenshot off the render thread."""
        img = self.state.screenshot_data
        if img is None:
            return
        self.state.screenshot_data = None
        threading.Thread(
            target=self.renderer.save_screenshot_to_disk,
            args=(img, _SCREENSHOTS_DIR),
            daemon=True,
        ).start()

    def _sync_vsync(self):
        if settings["vsync"] != self._vsync:
            self._vsync = settings["vsync"]
            glfw.swap_interval(self._vsync)

    @staticmethod
    def _pace(frame_start):
        # Only used when vsync is off
        if not settings["frame_limiter"] or settings["vsync"]:
            return
        deadline = frame_start + _FRAME_BUDGET
        nap = deadline - time.perf_counter() - _SPIN_WINDOW
        if nap > 0:
            time.sleep(nap)
        while time.perf_counter() < deadline:
            pass

    # ────────────────────── Hotkeys ──────────────────────

    def _pressed(self, key, flag):
        """Edge-triggered key check; ``flag`` names the AppState field."""
        down = glfw.get_key(self.window, key) == glfw.PRESS
        fired = down and not getattr(self.state, flag)
        setattr(self.state, flag, down)
        return fired

    def _handle_hotkeys(self):
        s = self.state
        typing = imgui.get_io().want_capture_keyboard

        if self._pressed(glfw.KEY_F11, "f11_was_pressed"):
            self._toggle_fullscreen()
        if self._pressed(glfw.KEY_F12, "f12_was_pressed"):
            s.screenshot_requested = True
        if self._pressed(glfw.KEY_TAB, "tab_was_pressed") and not typing:
            s.show_ui = not s.show_ui
        if self._pressed(glfw.KEY_SPACE, "space_was_pressed") and not typing:
            s.paused = not s.paused
            log.info("Scope %s", "paused" if s.paused else "resumed")
        if self._pressed(glfw.KEY_P, "p_was_pressed") and not typing:
            self.ui.export_png(s, self.scope)

    def _toggle_fullscreen(self):
        s = self.state
        if not s.is_fullscreen:
            s.windowed_pos = list(glfw.get_window_pos(self.window))
            s.windowed_size = list(glfw.get_window_size(self.window))
            monitor = glfw.get_primary_monitor()
            mode = glfw.get_video_mode(monitor)
            glfw.set_window_monitor(
                self.window, monitor, 0, 0,
                mode.size.width, mode.size.height, mode.refresh_rate)
        else:
            x, y = s.windowed_pos
            w, h = s.windowed_size
            glfw.set_window_monitor(self.window, None, x, y, w, h, 0)
        s.is_fullscreen = not s.is_fullscreen

    # ────────────────────── Shutdown ──────────────────────

    def _cleanup(self):
        # Reverse init order; any of these may be missing after a failed init
        for name in ("impl", "renderer", "scope", "ctx"):
            obj = getattr(self, name, None)
            if obj is None:
                continue
            if name == "impl":
                obj.shutdown()
            else:
                obj.release()
        glfw.terminate()


def main():
    parser = argparse.ArgumentParser(
        description="Phosphor-persistence X/Y oscilloscope display")
    parser.add_argument("--cpu", action="store_true",
                        help="use the numpy kernel instead of the GPU")
    parser.add_argument("--samples", type=str, default=None,
                        help=".npy file of (N, 2) X/Y samples to play back")
    parser.add_argument("--workers", type=int, default=None,
                        help="CPU backend thread count (0 = no pool)")
    args = parser.parse_args()

    if args.workers is not None:
        settings["cpu_workers"] = max(args.workers, 0)

    Application(force_cpu=args.cpu, samples_path=args.samples).run()


if __name__ == "__main__":
    main()
