"""Helpers shared across the client."""
