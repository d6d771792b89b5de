"""Persisted tables and source-normalized records."""
