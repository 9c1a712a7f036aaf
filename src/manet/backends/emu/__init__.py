"""In-process emulation engine implementing the backend contracts."""

from manet.backends.emu.engine import EmuEngine

__all__ = ["EmuEngine"]
