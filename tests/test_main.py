import pytest

glfw = pytest.importorskip("glfw")
pytest.importorskip("imgui.integrations.glfw")

import main  # noqa: E402


def test_window_opens_without_decorations(monkeypatch):
    hints = {}
    monkeypatch.setattr(glfw, "window_hint",
                        lambda hint, value: hints.__setitem__(hint, value))
    monkeypatch.setattr(glfw, "create_window",
                        lambda w, h, title, monitor, share: (w, h, title))

    assert main._open_window((4, 3)) == (
        main.WINDOW_W, main.WINDOW_H, main.WINDOW_TITLE)
    assert hints[glfw.DECORATED] is False
    assert hints[glfw.CONTEXT_VERSION_MAJOR] == 4
    assert hints[glfw.CONTEXT_VERSION_MINOR] == 3
