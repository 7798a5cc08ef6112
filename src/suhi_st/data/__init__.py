"""
Imagery access for suhi_st.

This module provides:
- Grid and Image raster model (image.py)
- STAC search, signing and band reads (stac.py)
- Lazy image collections and filters (collection.py)
"""

from .image import Grid, Image
from .stac import StacCatalog, search_stac, read_band, sign_href
from .collection import CollectionInfo, Filter, ImageCollection, item_datetime

__all__ = [
    # image
    'Grid',
    'Image',
    # stac
    'StacCatalog',
    'search_stac',
    'read_band',
    'sign_href',
    # collection
    'CollectionInfo',
    'Filter',
    'ImageCollection',
    'item_datetime',
]
