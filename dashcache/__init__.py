"""dashcache: cache, rate-limiting and monitoring core for the Athlete Dashboard."""

__version__ = "1.0.0"
