"""Domain Event definitions.

Represents significant occurrences within the domain that other parts
of the system react to (e.g. the cache monitor observing cache traffic).
"""
