"""apiconform: bulk governance validation of published API definitions."""

__version__ = "0.1.0"
