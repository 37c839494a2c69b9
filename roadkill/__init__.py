"""Roadkill wiki storage layer."""

# Single source for the product/file version reported by ApplicationSettings.
__version__ = "2.0.0"
