"""
NFL data ingest.

Key components:
- RateLimiter: per-source request pacing, concurrency caps and backoff
- ResponseCache: TTL store for raw source responses
- Adapters: ESPN, Pro Football Reference, mock and composite sources
- IdentityMatcher: links source player ids to internal player identities
"""
