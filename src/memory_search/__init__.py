"""Natural-language semantic search over saved memories."""

__version__ = "0.1.0"
