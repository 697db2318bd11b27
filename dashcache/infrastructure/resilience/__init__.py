"""Request identity helpers used by rate limiting.

Bounded Context: API Resilience
"""
