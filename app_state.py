# =============================
# Centralized Application State
# =============================
"""
One ``AppState`` instance is created in ``Application.__init__`` and
passed by reference to the UI and hotkey handlers.
"""

import time
from dataclasses import dataclass, field
from typing import Optional

import numpy as np


@dataclass
class AppState:
    """All mutable runtime state, grouped logically."""

    # ── Backend ──
    backend_name: str = ""
    paused: bool = False
    samples_last_frame: int = 0
    lines_last_frame: int = 0

    # ── FPS tracking ──
    fps_counter: int = 0
    fps_timer: float = field(default_factory=time.perf_counter)
    current_fps: int = 0

    # ── Screenshot / export ──
    f12_was_pressed: bool = False
    screenshot_flash: float = 0.0
    screenshot_requested: bool = False
    screenshot_data: Optional[np.ndarray] = None
    p_was_pressed: bool = False
    export_status_msg: str = ""
    export_status_time: float = 0.0

    # ── Fullscreen ──
    windowed_pos: list = field(default_factory=lambda: [100, 100])
    windowed_size: list = field(default_factory=lambda: [720, 720])
    is_fullscreen: bool = False
    f11_was_pressed: bool = False

    # ── Keys ──
    space_was_pressed: bool = False
    tab_was_pressed: bool = False
    show_ui: bool = True

    # ── Presets ──
    preset_names: list = field(default_factory=list)
    selected_preset_idx: int = 0
    preset_name_buf: str = ""
    preset_status_msg: str = ""
    preset_status_time: float = 0.0

    # ── Timing ──
    start_time: float = field(default_factory=time.perf_counter)
    prev_frame_time: float = field(default_factory=time.perf_counter)

    def tick_fps(self, now):
        """Count a frame; refresh ``current_fps`` once per second."""
        self.fps_counter += 1
        if now - self.fps_timer >= 1.0:
            self.current_fps = self.fps_counter
            self.fps_counter = 0
            self.fps_timer = now
