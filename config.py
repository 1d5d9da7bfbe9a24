# =============================
# Glowie configuration
# =============================
import json
import logging
import os
from typing import TypedDict

log = logging.getLogger(__name__)

# Window
WINDOW_W, WINDOW_H = 720, 720
WINDOW_TITLE = "Glowie"

# Spatial chunk grid (16×16 cells over [-1, 1]²)
CHUNK_GRID = 16
CHUNK_COUNT = CHUNK_GRID * CHUNK_GRID
CHUNK_REACH = 1.0 / 8.0   # segment → chunk assignment radius around cell centre

# Line buffer capacity (GPU SSBO size, in segments)
MAX_LINES = 65536

# Kernel constants
DISCARD_MARGIN = 1.1      # pixels with max(|x|, |y|) beyond this are skipped
BRIGHTNESS_MAX = 2.0      # clamp ceiling for accumulated intensity
NORM_K = 0.5              # k in excitation / (k·sigma + |v|)

# Kernel defaults (time unit = one sample period)
DEFAULT_LINE_RADIUS = 5.0
DEFAULT_DECAY = 1.0 - 1e-3
DEFAULT_SIGMA = 2e-3
DEFAULT_INTENSITY = 1e-5

# Accepted ranges for runtime settings
DECAY_RANGE = (1e-6, 1.0 - 1e-7)  # top must stay below 1 as float32
SIGMA_RANGE = (1e-5, 0.25)
INTENSITY_RANGE = (0.0, 1e-2)

# Signal
SAMPLE_RATE = 48000
MAX_SAMPLES_PER_READ = 8192

# Rendering
TARGET_FPS = 60

# =============================
# Runtime settings
# =============================


class Settings(TypedDict):
    """Typed schema for the runtime settings dict.

    Using ``int`` for boolean toggles (0/1) to match ImGui checkbox
    conventions.
    """
    # Phosphor
    decay: float
    sigma: float
    intensity: float
    line_radius: float
    # Lissajous source
    source_fx: float
    source_fy: float
    source_phase: float
    source_amplitude: float
    # CPU backend threads (0 = run in caller thread)
    cpu_workers: int
    # Frame pacing
    frame_limiter: int
    vsync: int


DEFAULT_SETTINGS: Settings = {
    "decay": DEFAULT_DECAY,
    "sigma": DEFAULT_SIGMA,
    "intensity": DEFAULT_INTENSITY,
    "line_radius": DEFAULT_LINE_RADIUS,
    "source_fx": 220.0,
    "source_fy": 330.0,
    "source_phase": 0.25,
    "source_amplitude": 0.8,
    "cpu_workers": 4,
    "frame_limiter": 0,
    "vsync": 1,
}

settings: Settings = dict(DEFAULT_SETTINGS)

_FLOAT_RANGES = {
    "decay": DECAY_RANGE,
    "sigma": SIGMA_RANGE,
    "intensity": INTENSITY_RANGE,
    "line_radius": (0.0, 100.0),
    "source_fx": (0.0, SAMPLE_RATE / 2.0),
    "source_fy": (0.0, SAMPLE_RATE / 2.0),
    "source_phase": (0.0, 1.0),
    "source_amplitude": (0.0, 1.0),
}
_INT_RANGES = {
    "cpu_workers": (0, 64),
    "frame_limiter": (0, 1),
    "vsync": (0, 1),
}


def normalize_settings(raw) -> Settings:
    """Coerce a loaded dict into a complete, in-range ``Settings``.

    Unknown keys are dropped, missing or malformed values fall back to
    the defaults, numeric values are clamped to their accepted range.
    """
    out: Settings = dict(DEFAULT_SETTINGS)
    if not isinstance(raw, dict):
        return out
    for key, (lo, hi) in _FLOAT_RANGES.items():
        if key not in raw:
            continue
        try:
            val = float(raw[key])
        except (TypeError, ValueError):
            continue
        if val != val:  # NaN
            continue
        out[key] = min(max(val, lo), hi)
    for key, (lo, hi) in _INT_RANGES.items():
        if key not in raw:
            continue
        try:
            val = int(raw[key])
        except (TypeError, ValueError, OverflowError):  # json allows Infinity
            continue
        out[key] = min(max(val, lo), hi)
    return out


def load_preset(path) -> Settings:
    """Read a JSON preset; unreadable files yield the defaults."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        log.warning("Preset %s not loaded (%s), using defaults", path, e)
        return dict(DEFAULT_SETTINGS)
    return normalize_settings(data)


def save_preset(path, data) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(normalize_settings(data), f, indent=2, ensure_ascii=False)
    log.info("Preset saved: %s", path)
