"""Player identity matching across sources."""
