"""Process bootstrap and request observability for the API server."""

__version__ = "0.1.0"
