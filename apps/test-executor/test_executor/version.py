"""Release version of the test executor."""

__version__ = "0.1.0"
