"""Campaign condition engine API."""

__version__ = "0.1.0"
