# =============================
# UIManager: ImGui panels and presets
# =============================
"""
Everything drawn with ImGui: phosphor parameters, the Lissajous source,
status line, presets, export buttons and the profiler.  Widgets edit the
shared ``config.settings`` dict directly; ``Scope.step`` picks the new
values up on the next frame.
"""

import logging
import os
import time

import imgui

from config import (
    DECAY_RANGE, SIGMA_RANGE, INTENSITY_RANGE,
    load_preset, save_preset, settings,
)

log = logging.getLogger(__name__)

_OK_COLOR = (0.31, 0.75, 0.31, 1.0)
_WARN_COLOR = (0.95, 0.75, 0.20, 1.0)
_ERR_COLOR = (0.95, 0.30, 0.20, 1.0)

_PRESET_EXT = ".json"
_FRAME_BUDGET_MS = 1000.0 / 60.0


def _status_line(msg, since, now, ttl):
    if msg and now - since < ttl:
        imgui.push_style_color(imgui.COLOR_TEXT, *_OK_COLOR)
        imgui.text(msg)
        imgui.pop_style_color()


class UIManager:
    """Settings panel for the scope window."""

    def __init__(self, presets_dir, exports_dir):
        self._presets_dir = presets_dir
        self._exports_dir = exports_dir

    # ────────────────── Widgets bound to settings ──────────────────

    @staticmethod
    def _checkbox(label, key):
        """Checkbox editing ``settings[key]`` as 0/1."""
        changed, on = imgui.checkbox(label, bool(settings[key]))
        if changed:
            settings[key] = int(on)
        return changed

    @staticmethod
    def _slider_float(label, key, v_min, v_max, fmt="%.3f", log_scale=False):
        flags = imgui.SLIDER_FLAGS_LOGARITHMIC if log_scale else 0
        changed, value = imgui.slider_float(
            label, settings[key], v_min, v_max, fmt, flags)
        if changed:
            settings[key] = value
        return changed

    # ────────────────── Presets ──────────────────

    def _preset_path(self, name):
        return os.path.join(self._presets_dir, name + _PRESET_EXT)

    def refresh_presets(self, state):
        names = [f[:-len(_PRESET_EXT)] for f in os.listdir(self._presets_dir)
                 if f.endswith(_PRESET_EXT)]
        state.preset_names = sorted(names)

    def _preset_done(self, state, msg):
        self.refresh_presets(state)
        state.preset_status_msg = msg
        state.preset_status_time = time.perf_counter()

    def save_preset(self, name, state):
        save_preset(self._preset_path(name), settings)
        self._preset_done(state, f"Saved: {name}")

    def load_preset(self, name, state):
        path = self._preset_path(name)
        if not os.path.isfile(path):
            log.warning("No preset file at %s", path)
            return
        settings.update(load_preset(path))
        log.info("Preset %s applied", name)
        self._preset_done(state, f"Loaded: {name}")

    def delete_preset(self, name, state):
        path = self._preset_path(name)
        try:
            os.remove(path)
            log.info("Preset %s removed", name)
        except FileNotFoundError:
            log.warning("No preset file at %s", path)
        self._preset_done(state, f"Deleted: {name}")

    # ────────────────── Panel ──────────────────

    def draw(self, state, scope, source, now, metrics=None):
        if not state.show_ui:
            return

        colors = (
            (imgui.COLOR_TITLE_BACKGROUND_ACTIVE, (0.18, 0.55, 0.22, 1.0)),
            (imgui.COLOR_SLIDER_GRAB, (0.25, 0.78, 0.30, 1.0)),
            (imgui.COLOR_SLIDER_GRAB_ACTIVE, (0.35, 0.90, 0.40, 1.0)),
            (imgui.COLOR_CHECK_MARK, _OK_COLOR),
            (imgui.COLOR_FRAME_BACKGROUND, (0.20, 0.20, 0.20, 1.0)),
        )
        for idx, rgba in colors:
            imgui.push_style_color(idx, *rgba)

        imgui.begin("Glowie")
        self._draw_phosphor_section()
        self._draw_source_section(source)
        self._draw_status_section(state, scope)
        self._draw_presets_section(state, now)
        self._draw_export_section(state, scope, now)
        if metrics is not None:
            self._draw_metrics_section(metrics)

        imgui.separator()
        imgui.text("Esc quit | Tab panel | F11 fullscreen")
        imgui.text("F12 screenshot | P export PNG | Space pause")
        imgui.end()

        imgui.pop_style_color(len(colors))

    @staticmethod
    def _draw_phosphor_section():
        if not imgui.collapsing_header(
                "Phosphor", flags=imgui.TREE_NODE_DEFAULT_OPEN)[0]:
            return
        # decay sits just below 1, so edit the loss per sample instead
        loss = 1.0 - settings["decay"]
        changed, loss = imgui.slider_float(
            "Decay / sample", loss,
            1.0 - DECAY_RANGE[1], 1.0 - DECAY_RANGE[0], "%.2e",
            imgui.SLIDER_FLAGS_LOGARITHMIC)
        if changed:
            settings["decay"] = 1.0 - loss
        UIManager._slider_float("Sigma", "sigma", *SIGMA_RANGE,
                                fmt="%.2e", log_scale=True)
        UIManager._slider_float("Intensity", "intensity",
                                INTENSITY_RANGE[1] * 1e-4, INTENSITY_RANGE[1],
                                fmt="%.2e", log_scale=True)
        UIManager._checkbox("VSync", "vsync")
        imgui.same_line()
        UIManager._checkbox("Frame limiter", "frame_limiter")
        imgui.separator()

    @staticmethod
    def _draw_source_section(source):
        if not hasattr(source, "update"):
            imgui.text_disabled("Source: sample file")
            return
        if not imgui.collapsing_header("Lissajous Source")[0]:
            return
        changed = UIManager._slider_float(
            "X freq", "source_fx", 1.0, 2000.0, fmt="%.1f Hz", log_scale=True)
        changed |= UIManager._slider_float(
            "Y freq", "source_fy", 1.0, 2000.0, fmt="%.1f Hz", log_scale=True)
        changed |= UIManager._slider_float("Phase", "source_phase", 0.0, 1.0)
        changed |= UIManager._slider_float(
            "Amplitude", "source_amplitude", 0.0, 1.0)
        if changed:
            source.update(settings)

    @staticmethod
    def _draw_status_section(state, scope):
        w, h = scope.size
        imgui.text(f"{state.current_fps} FPS  |  {state.backend_name} "
                   f"{w}x{h}")
        imgui.text(f"Samples/frame: {state.samples_last_frame:,}"
                   f"  Lines/frame: {state.lines_last_frame:,}")
        if state.paused:
            imgui.push_style_color(imgui.COLOR_TEXT, *_WARN_COLOR)
            imgui.text("PAUSED")
            imgui.pop_style_color()

    def _draw_presets_section(self, state, now):
        if not imgui.collapsing_header("Presets")[0]:
            return

        _, state.preset_name_buf = imgui.input_text(
            "Name##preset", state.preset_name_buf, 64)
        imgui.same_line()
        name = state.preset_name_buf.strip()
        if imgui.button("Save##preset") and name:
            self.save_preset(name, state)
            state.preset_name_buf = ""

        names = state.preset_names
        if not names:
            imgui.text_disabled("No presets yet")
        else:
            state.selected_preset_idx = min(
                state.selected_preset_idx, len(names) - 1)
            _, state.selected_preset_idx = imgui.combo(
                "##preset_list", state.selected_preset_idx, names)
            picked = names[state.selected_preset_idx]
            imgui.same_line()
            if imgui.button("Load##preset"):
                self.load_preset(picked, state)
            imgui.same_line()
            if imgui.button("Delete##preset"):
                self.delete_preset(picked, state)

        _status_line(state.preset_status_msg, state.preset_status_time,
                     now, 3.0)

    def _draw_export_section(self, state, scope, now):
        if not imgui.collapsing_header("Export")[0]:
            return
        if imgui.button("Screenshot (F12)"):
            state.screenshot_requested = True
        imgui.same_line()
        if imgui.button("Export PNG (P)"):
            self.export_png(state, scope)
        _status_line(state.export_status_msg, state.export_status_time,
                     now, 4.0)

    def export_png(self, state, scope):
        path = scope.export_png(self._exports_dir)
        if path:
            state.export_status_msg = f"Exported {os.path.basename(path)}"
        else:
            state.export_status_msg = "Export failed"
        state.export_status_time = time.perf_counter()

    # ────────────────── Profiler ──────────────────

    @staticmethod
    def _draw_metrics_section(metrics):
        open_, _ = imgui.collapsing_header("Performance")
        _, metrics.enabled = imgui.checkbox("Profile", metrics.enabled)
        if not open_:
            return
        if not metrics.enabled:
            imgui.text_disabled("Profiler off")
            return
        imgui.same_line()
        if imgui.button("Reset##perf"):
            metrics.reset()

        width = imgui.get_content_region_available()[0]
        frame = metrics.frame
        imgui.separator()
        imgui.text(f"Frame {frame.avg_ms:.2f} ms  (max {frame.max_ms:.2f}, "
                   f"1% low {metrics.fps_1pct_low:.0f} FPS)")
        imgui.plot_lines(
            "##frame_ms", frame.history.astype('f4'),
            graph_size=(width, 40), scale_min=0.0,
            scale_max=max(frame.max_ms * 1.2, 1.0))

        for title, rows in (("CPU", metrics.get_cpu_sections()),
                            ("GPU", metrics.get_gpu_sections())):
            if not rows:
                continue
            imgui.separator()
            imgui.text(title)
            for name, avg_ms, _ in rows:
                share = min(avg_ms / _FRAME_BUDGET_MS, 1.0)
                if share > 0.6:
                    color = _ERR_COLOR
                elif share > 0.3:
                    color = _WARN_COLOR
                else:
                    color = _OK_COLOR
                imgui.push_style_color(imgui.COLOR_PLOT_HISTOGRAM, *color)
                imgui.progress_bar(share, (width * 0.5, 14),
                                   f"{avg_ms:.2f} ms")
                imgui.pop_style_color()
                imgui.same_line()
                imgui.text(name)
            total = sum(avg for _, avg, _ in rows)
            imgui.text(f"  {title} total {total:.2f} ms")
