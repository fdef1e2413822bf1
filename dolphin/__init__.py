"""Dolphin: image-to-solution STEM solver with video, search and translation."""

__version__ = "1.0.0"
