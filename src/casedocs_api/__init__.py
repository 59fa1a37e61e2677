"""Client document upload, retrieval and lifecycle API."""

__version__ = "0.1.0"
