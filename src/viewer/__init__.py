"""
Client side of worksheet viewing.

Decrypts delivered pages, maps stored region geometry onto the rendered
surface, runs the region interaction state machine and keeps narration audio
and the avatar video in step.
"""

from .page_viewer import WorksheetViewer

__all__ = ["WorksheetViewer"]
