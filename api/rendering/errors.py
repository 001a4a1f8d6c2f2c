"""Errors raised while substituting and rendering a design.

All are scoped to a single render call. The batch orchestrator turns the
first two into per-participant ledger entries; ``UnreadableImageError``
never leaves scene loading, which drops the offending image node.
"""


class MalformedDesignError(Exception):
    """Raised when a design document cannot be parsed or lacks expected structure."""


class RenderFailureError(Exception):
    """Raised when the rasterizer fails while drawing a design."""


class UnreadableImageError(Exception):
    """Raised when downloaded image bytes cannot be decoded."""
