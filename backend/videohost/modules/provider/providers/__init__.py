"""Video provider implementations.

Contains implementations for Mux and Vimeo.
"""

from .mux import MuxProvider
from .vimeo import VimeoProvider

__all__ = ["MuxProvider", "VimeoProvider"]
