"""
Services module.

- ingest: source adapters, rate limiting, response cache and identity matching
"""
