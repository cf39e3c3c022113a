"""
Image helpers for the ID photo pipeline.

``transform`` wraps Pillow decode / orient / resize / encode / composite
operations behind plain byte-in, byte-out functions; ``attention`` picks
the crop window that keeps the most salient region (usually the face).
"""

from . import attention, transform

__all__ = ["attention", "transform"]
