"""Shared infrastructure for the composition engine (logging)."""
