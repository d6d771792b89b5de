"""
StatLine ingest core.

Data acquisition and cross-source reconciliation for NFL statistics:
- core: configuration, logging, metrics, database session management
- models: persisted tables and source-normalized records
- services.ingest: rate limiting, response caching, source adapters,
  composite orchestration and player identity matching
"""
__version__ = "1.0.0"
