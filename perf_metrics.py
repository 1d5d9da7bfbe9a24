# =============================
# PerfMetrics: lightweight frame profiler
# =============================
"""
CPU and GPU timings for the scope loop, kept as rolling averages for the
ImGui metrics panel.

Usage::

    metrics = PerfMetrics(ctx)        # ctx may be None (no GPU timers)
    metrics.begin_frame()
    metrics.begin("chunks") ... metrics.end("chunks")
    metrics.begin_gpu("kernel") ... metrics.end_gpu("kernel")
    metrics.end_frame()

GPU sections use ``GL_TIME_ELAPSED`` queries read back one frame late so
the pipeline never stalls on them.
"""

import time

import numpy as np

_HISTORY = 120
_GPU_QUERY_POOL = 3  # ring-buffer depth to avoid stalls


class _Rolling:
    """Fixed-length ring of millisecond samples."""
    __slots__ = ('history', 'count', 'avg_ms', 'max_ms')

    def __init__(self):
        self.history = np.zeros(_HISTORY, dtype=np.float64)
        self.count = 0
        self.avg_ms = 0.0
        self.max_ms = 0.0

    def push(self, ms):
        self.history[self.count % _HISTORY] = ms
        self.count += 1
        window = self.history[:min(self.count, _HISTORY)]
        self.avg_ms = float(window.mean())
        self.max_ms = float(window.max())


class _GpuTimer:
    __slots__ = ('queries', 'ring_idx', 'stats')

    def __init__(self, ctx):
        self.queries = [ctx.query(time=True) for _ in range(_GPU_QUERY_POOL)]
        self.ring_idx = 0
        self.stats = _Rolling()


class PerfMetrics:
    """CPU + GPU section timer with rolling averages."""

    def __init__(self, ctx=None):
        self.ctx = ctx
        self.enabled = False  # toggled from UI

        self._cpu = {}        # name → _Rolling, insertion-ordered
        self._cpu_start = {}
        self._gpu = {}        # name → _GpuTimer

        self._frame_start = 0.0
        self.frame = _Rolling()
        self.fps_1pct_low = 0.0

    # ────────────── Frame boundary ──────────────

    def begin_frame(self):
        if self.enabled:
            self._frame_start = time.perf_counter()

    def end_frame(self):
        if not self.enabled:
            return
        self.frame.push((time.perf_counter() - self._frame_start) * 1000.0)

        # 1% low FPS over the rolling window
        n = min(self.frame.count, _HISTORY)
        worst = np.sort(self.frame.history[:n])[::-1]
        pct1 = max(int(n * 0.01), 1)
        self.fps_1pct_low = 1000.0 / max(float(worst[:pct1].mean()), 0.01)

        self._collect_gpu_results()

    # ────────────── CPU sections ──────────────

    def begin(self, name):
        if not self.enabled:
            return
        self._cpu.setdefault(name, _Rolling())
        self._cpu_start[name] = time.perf_counter()

    def end(self, name):
        if not self.enabled or name not in self._cpu_start:
            return
        start = self._cpu_start.pop(name)
        self._cpu[name].push((time.perf_counter() - start) * 1000.0)

    # ────────────── GPU sections ──────────────

    def begin_gpu(self, name):
        if not self.enabled or self.ctx is None:
            return
        timer = self._gpu.get(name)
        if timer is None:
            timer = self._gpu[name] = _GpuTimer(self.ctx)
        timer.queries[timer.ring_idx % _GPU_QUERY_POOL].__enter__()

    def end_gpu(self, name):
        if not self.enabled or self.ctx is None:
            return
        timer = self._gpu.get(name)
        if timer is None:
            return
        timer.queries[timer.ring_idx % _GPU_QUERY_POOL].__exit__(
            None, None, None)
        timer.ring_idx += 1

    def _collect_gpu_results(self):
        for timer in self._gpu.values():
            if timer.ring_idx < 2:
                continue  # need at least one frame of delay
            q = timer.queries[(timer.ring_idx - 1) % _GPU_QUERY_POOL]
            timer.stats.push(q.elapsed / 1_000_000.0)

    # ────────────── Data access for UI ──────────────

    def get_cpu_sections(self):
        """Returns list of (name, avg_ms, history_array)."""
        return [(name, r.avg_ms, r.history) for name, r in self._cpu.items()]

    def get_gpu_sections(self):
        return [(name, t.stats.avg_ms, t.stats.history)
                for name, t in self._gpu.items()]

    def reset(self):
        self._cpu.clear()
        self._cpu_start.clear()
        self._gpu.clear()
        self.frame = _Rolling()
        self.fps_1pct_low = 0.0
