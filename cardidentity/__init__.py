"""Card identity resolution and caching engine."""
