"""Feed ingestion and query tools for automated clients."""

__version__ = "0.1.0"
