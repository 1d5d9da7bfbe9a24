"""Compute-shader pass against the numpy kernel (needs an OpenGL 4.3 context)."""

import numpy as np
import pytest

moderngl = pytest.importorskip("moderngl")

from chunking import ChunkBuilder
from gpu_pipeline import GPUPipeline
from phosphor import accumulate, pixel_positions
from scope_types import Frame, ScopeConfig, dequantize_lines, quantize_lines

W, H = 64, 48


@pytest.fixture(scope="module")
def ctx():
    try:
        ctx = moderngl.create_standalone_context(require=430)
    except Exception as e:
        pytest.skip("no OpenGL 4.3 context: %s" % e)
    yield ctx
    ctx.release()


@pytest.fixture
def pipeline(ctx):
    try:
        p = GPUPipeline(ctx, W, H)
    except RuntimeError as e:
        pytest.skip(str(e))
    yield p
    p.release()


def _frames(n_frames=2):
    b = ChunkBuilder()
    t = np.linspace(0.0, 1.0, 120)
    for k in range(n_frames):
        phase = k * 0.3
        b.extend(np.stack([0.8 * np.sin(2 * np.pi * 2 * t + phase),
                           0.7 * np.sin(2 * np.pi * 3 * t)], axis=1))
        yield b.build()


def _as_uploaded(frame):
    """What the shader actually sees after snorm quantisation."""
    return Frame(dequantize_lines(quantize_lines(frame.lines)),
                 frame.chunks, frame.total_time)


def test_matches_numpy_kernel(pipeline):
    cfg = ScopeConfig(window_size=(float(W), float(H)), decay=0.99,
                      sigma=0.03, intensity=1e-4)
    cpu = np.zeros((H, W), dtype=np.float32)
    for frame in _frames(2):
        pipeline.run(frame, cfg)
        cpu = accumulate(cpu, _as_uploaded(frame), cfg)
        gpu = pipeline.brightness()
        assert gpu.shape == (H, W)
        assert np.allclose(gpu, cpu, rtol=1e-3, atol=1e-4)
    assert cpu.max() > 0.0


def test_display_is_sqrt_of_brightness(pipeline):
    cfg = ScopeConfig(window_size=(float(W), float(H)), decay=0.99,
                      sigma=0.03, intensity=1e-4)
    pipeline.run(next(_frames(1)), cfg)
    rgba = pipeline.display()
    b = pipeline.brightness()
    kept = rgba[..., 3] == 1.0
    assert kept.any()
    assert np.allclose(rgba[..., 1][kept], np.sqrt(b[kept]), atol=1e-5)


def test_empty_frame_keeps_brightness(pipeline):
    cfg = ScopeConfig(window_size=(float(W), float(H)), decay=0.5)
    seed = np.full((H, W), 0.75, dtype=np.float32)
    pipeline.load_brightness(seed)
    pipeline.run(Frame(), cfg)
    _, _, keep = pixel_positions(W, H)
    assert np.allclose(pipeline.brightness()[keep], 0.75)


def test_resize_and_shape_checks(pipeline):
    pipeline.resize(32, 16)
    assert pipeline.size == (32, 16)
    assert not pipeline.brightness().any()
    with pytest.raises(ValueError):
        pipeline.load_brightness(np.zeros((H, W)))
