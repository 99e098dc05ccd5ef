"""
Tag Tree — grows a radial, tag-connected tree of tracks from a music library.

Drop a track and the tree expands level by level: representative tags of each
track pick related tracks, which are laid out on concentric rings and joined
by color-coded curved connectors.
"""

__version__ = "0.1.0"
