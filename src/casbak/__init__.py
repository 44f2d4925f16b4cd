"""casbak: deduplicating content-addressed backup with sneakernet fallback."""

__version__ = "0.1.0"
