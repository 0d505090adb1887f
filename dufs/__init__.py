"""Access control, request logging, settings and listeners for a utility file server."""

__version__ = "0.43.0"