"""Client document upload, retrieval and lifecycle management."""
