"""Core Layer: the cache, rate-limit, monitoring and warming services."""
