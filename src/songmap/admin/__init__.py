"""
Admin module for SongMap.

Bulk, schema-less property mutation across songs and edges.
"""

from .properties import PropertyAdministrator, parse_value

__all__ = ["PropertyAdministrator", "parse_value"]
