"""loreweave: Lorebook import and world info activation for chat context."""

__version__ = "0.1.0"
