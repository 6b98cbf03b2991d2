"""PharmaSync - offline-first synchronization for pharmacy data."""

__version__ = "0.1.0"
