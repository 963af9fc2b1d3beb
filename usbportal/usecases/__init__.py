"""Use-case layer for broker-mediated USB operations.

Each module coordinates domain objects and the ``BusPort`` without knowing
how the bus is reached, preserving the ports/adapters boundary.
"""
