"""Shared helpers for configuration lookups and logging."""
