# src/__init__.py — v1
"""mediaindex: discover pages of a content tree, scan them for media, keep a media index."""

from mediaindex.version import __version__

__all__ = ["__version__"]
