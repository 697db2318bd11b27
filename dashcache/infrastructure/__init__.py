"""Infrastructure Layer: Contains concrete implementations and adapters.

Connects the core to the outside world (storage backends, alert sinks,
configuration files, the console) by implementing the interfaces defined
in the domain layer.
"""
