"""
Engine adapters for the photo pipeline.

Other background-replacement providers should live alongside the Gemini
adapter in this package.
"""

__all__ = ["gemini_background"]
