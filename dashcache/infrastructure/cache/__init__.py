"""Store Backend Implementations.

Provides the two storage tiers behind the CacheService: an in-process
fast tier and a durable disk-backed tier.
Bounded Context: Cache Management
"""
