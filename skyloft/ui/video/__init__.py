"""Render sink components."""

from .mpv_sink import MpvRenderSink, MPVSignals

__all__ = ['MpvRenderSink', 'MPVSignals']
