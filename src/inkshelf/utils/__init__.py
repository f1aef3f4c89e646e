"""Shared helpers (retry, fuzzy matching)."""
