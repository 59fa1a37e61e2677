"""Shared helpers used across case document features."""
