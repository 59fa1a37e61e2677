"""Cross-cutting request concerns (authentication)."""
