"""
Column metadata: the per-definition cache and the builder that discovers it.
"""

from dbquery.engines.metadata.builder import MetadataCacheBuilder, cache_from_columns, metadata_params
from dbquery.engines.metadata.cache import MetadataCache

__all__ = [
    "MetadataCache",
    "MetadataCacheBuilder",
    "cache_from_columns",
    "metadata_params",
]
