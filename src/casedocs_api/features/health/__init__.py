"""Liveness and readiness reporting."""
