"""Facet Jewelry Studio - AI jewelry design generation and multi-angle views."""

__version__ = "0.3.0"

from facet.core.config import FacetConfig, config

__all__ = [
    "FacetConfig",
    "config",
]
