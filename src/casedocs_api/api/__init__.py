"""API router assembly and shared dependencies."""
