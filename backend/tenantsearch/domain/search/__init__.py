"""Search index, ranking, caching and replication."""
