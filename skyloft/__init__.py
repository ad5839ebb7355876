"""Skyloft Wallpaper: a looping video desktop background fed by a local clip library."""

__version__ = "1.0.0"
