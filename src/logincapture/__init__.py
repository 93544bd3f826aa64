"""Login Capture — authenticated session and handle capture from an embedded browser."""

from __future__ import annotations

try:
    from importlib.metadata import version

    __version__ = version("logincapture")
except Exception:
    __version__ = "0.0.0"
