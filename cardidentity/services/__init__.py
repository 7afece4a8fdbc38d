"""
Card identity services.

Scoring, caching, metrics, upstream clients, tiered resolution, token
resolution and bulk import. Import from the submodules directly.
"""
