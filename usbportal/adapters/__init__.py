"""Adapter package for external I/O implementations.

Purpose:
    Collect concrete implementations for domain ports (the D-Bus transport,
    the JSON settings file, and an in-memory broker double) used by use cases.

Dependencies:
    ``dbus_bus`` and ``variant_codec`` depend on ``dbus-fast``; the others only
    on the standard library and domain protocol definitions.

Call context:
    Imported by app composition modules (for runtime wiring) and by tests (for
    mocks and transport-level behavior verification).
"""
