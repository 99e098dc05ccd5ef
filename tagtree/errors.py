"""Exceptions raised by the tree core."""


class TreeError(Exception):
    """Base class for every tree-core failure."""


class ValidationError(TreeError):
    """Track data is malformed (missing title/artist, bad tag list)."""


class DuplicateError(TreeError):
    """A child track is identical to its parent's track."""


class NodeNotFoundError(TreeError):
    """The referenced node is not (or no longer) in the registry."""


class RootExistsError(TreeError):
    """A parentless node was added while the tree already has a root."""
