"""
Catalog module.

Sheep data model, catalog decoding, and the sheep server client.
"""

from .models import ContentItem, full_id_from_filename
from .parser import decode_catalog_body, decompress_gzip, parse_catalog, diff
from .client import CatalogClient, CatalogClientConfig

__all__ = [
    "ContentItem",
    "full_id_from_filename",
    "decode_catalog_body",
    "decompress_gzip",
    "parse_catalog",
    "diff",
    "CatalogClient",
    "CatalogClientConfig",
]
