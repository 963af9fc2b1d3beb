"""Application layer: the ``UsbPortal`` facade and the command line entry point."""
