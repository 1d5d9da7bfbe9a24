# =============================
# X/Y sample sources
# =============================
"""
Beam-position producers paced against the wall clock.

``read(now)`` returns every sample that fell due since the previous
call, as an ``(N, 2)`` float32 array in [-1, 1].  The first call only
starts the clock.  Long stalls (window drag, breakpoint) are capped at
``MAX_SAMPLES_PER_READ`` so a single frame never gets flooded.
"""

import logging
import math

import numpy as np

from config import SAMPLE_RATE, MAX_SAMPLES_PER_READ

log = logging.getLogger(__name__)


class _PacedSource:

    def __init__(self, sample_rate=SAMPLE_RATE):
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        self.sample_rate = float(sample_rate)
        self._clock = None
        self._owed = 0.0
        self._position = 0   # samples emitted so far

    def read(self, now):
        if self._clock is None:
            self._clock = now
            return np.empty((0, 2), dtype=np.float32)
        self._owed += (now - self._clock) * self.sample_rate
        self._clock = now
        n = int(self._owed)
        self._owed -= n
        if n > MAX_SAMPLES_PER_READ:
            log.debug("Source fell behind by %d samples", n - MAX_SAMPLES_PER_READ)
            n = MAX_SAMPLES_PER_READ
        samples = self.generate(self._position, n)
        self._position += n
        return samples

    def generate(self, first, count):
        raise NotImplementedError


class LissajousSource(_PacedSource):
    """``x = A·sin(2π·fx·t)``, ``y = A·sin(2π·(fy·t + phase))``."""

    def __init__(self, fx=220.0, fy=330.0, phase=0.25, amplitude=0.8,
                 sample_rate=SAMPLE_RATE):
        super().__init__(sample_rate)
        self.fx = float(fx)
        self.fy = float(fy)
        self.phase = float(phase)
        self.amplitude = float(amplitude)

    def update(self, s):
        """Pick up source parameters from the runtime settings dict."""
        self.fx = float(s["source_fx"])
        self.fy = float(s["source_fy"])
        self.phase = float(s["source_phase"])
        self.amplitude = float(s["source_amplitude"])

    def generate(self, first, count):
        t = (first + np.arange(count, dtype=np.float64)) / self.sample_rate
        out = np.empty((count, 2), dtype=np.float32)
        out[:, 0] = self.amplitude * np.sin(2.0 * math.pi * self.fx * t)
        out[:, 1] = self.amplitude * np.sin(
            2.0 * math.pi * (self.fy * t + self.phase))
        return out


class ArraySource(_PacedSource):
    """Plays back pre-decoded X/Y samples, optionally looping."""

    def __init__(self, samples, sample_rate=SAMPLE_RATE, loop=True):
        super().__init__(sample_rate)
        samples = np.asarray(samples, dtype=np.float32)
        if samples.ndim != 2 or samples.shape[1] != 2 or len(samples) == 0:
            raise ValueError("samples must be a non-empty (N, 2) array, "
                             "got shape %r" % (samples.shape,))
        self.samples = np.clip(samples, -1.0, 1.0)
        self.loop = loop

    @property
    def finished(self):
        return not self.loop and self._position >= len(self.samples)

    def generate(self, first, count):
        n = len(self.samples)
        if self.loop:
            return self.samples[(first + np.arange(count)) % n]
        return self.samples[min(first, n):min(first + count, n)]


def load_source(path, sample_rate=SAMPLE_RATE, loop=True):
    """Load an ``.npy`` file of ``(N, 2)`` samples as an ``ArraySource``."""
    data = np.load(path, allow_pickle=False)
    log.info("Loaded %d samples from %s", len(data), path)
    return ArraySource(data, sample_rate=sample_rate, loop=loop)
