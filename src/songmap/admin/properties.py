"""
Bulk property administration.

Adds or removes one dynamic property on every song or every NEXT edge in the
store. Keys end up inside the query text, so they are checked against the safe
identifier grammar; values are parsed strictly from their declared type.
"""

from __future__ import annotations
import math
import re
from typing import Any

from loguru import logger

from songmap.errors import InvalidArgumentError
from songmap.graph.repository import SongRepository
from songmap.identifiers import validate_identifier
from songmap.models import EDGE_BUILTIN_KEYS, SONG_BUILTIN_KEYS

INT32_RANGE = (-2**31, 2**31 - 1)
INT64_RANGE = (-2**63, 2**63 - 1)

_INTEGER = re.compile(r"[+-]?[0-9]+")
_DOUBLE = re.compile(r"[+-]?([0-9]+(\.[0-9]*)?|\.[0-9]+)([eE][+-]?[0-9]+)?")

TYPE_ALIASES = {
    "int": "int",
    "integer": "int",
    "long": "long",
    "double": "double",
    "float": "double",
    "boolean": "boolean",
    "bool": "boolean",
    "string": "string",
    "str": "string",
}


def _parse_integer(text: str, bounds, type_name: str) -> int:
    text = text.strip()
    if not _INTEGER.fullmatch(text):
        raise InvalidArgumentError(f"Value {text!r} is not a valid {type_name}")
    value = int(text)
    if not bounds[0] <= value <= bounds[1]:
        raise InvalidArgumentError(f"Value {text} is out of range for {type_name}")
    return value


def parse_value(type_name: str, value_text: str) -> Any:
    """
    Parse ``value_text`` as ``type_name``.

    Supported types are int (32-bit), long (64-bit), double, boolean
    (``true``/``false`` only) and string, plus the aliases integer, float,
    bool and str.

    Raises:
        InvalidArgumentError: unknown type or a value that does not parse
    """
    if value_text is None:
        raise InvalidArgumentError("Property value must not be empty")
    canonical = TYPE_ALIASES.get(str(type_name).strip().lower()) if type_name else None
    if canonical is None:
        raise InvalidArgumentError(f"Unsupported property type: {type_name!r}")

    if canonical == "string":
        return value_text
    if canonical == "int":
        return _parse_integer(value_text, INT32_RANGE, "int")
    if canonical == "long":
        return _parse_integer(value_text, INT64_RANGE, "long")
    if canonical == "double":
        text = value_text.strip()
        if not _DOUBLE.fullmatch(text):
            raise InvalidArgumentError(f"Value {value_text!r} is not a valid double")
        value = float(text)
        # 1e999 overflows to inf
        if not math.isfinite(value):
            raise InvalidArgumentError(f"Value {value_text!r} is not a finite double")
        return value

    lowered = value_text.strip().lower()
    if lowered not in ("true", "false"):
        raise InvalidArgumentError(f"Value {value_text!r} is not a valid boolean (expected true or false)")
    return lowered == "true"


class PropertyAdministrator:
    """Label-class wide property mutation for songs and NEXT edges."""

    def __init__(self, repository: SongRepository):
        self.repository = repository

    @staticmethod
    def _check_key(key: str, builtin, what: str) -> str:
        key = validate_identifier(key, "property key")
        if key in builtin:
            raise InvalidArgumentError(f"Property {key!r} is a built-in {what} attribute and cannot be changed")
        return key

    def add_node_property(self, key: str, type_name: str, value_text: str) -> int:
        """
        Set ``key`` to the parsed value on every song. Repeating the call
        overwrites the same property.

        Returns:
            Number of songs updated
        """
        key = self._check_key(key, SONG_BUILTIN_KEYS, "song")
        value = parse_value(type_name, value_text)
        updated = self.repository.set_node_property(key, value)
        logger.info(f"Set song property {key}={value!r} on {updated} song(s)")
        return updated

    def remove_node_property(self, key: str) -> int:
        key = self._check_key(key, SONG_BUILTIN_KEYS, "song")
        removed = self.repository.remove_node_property(key)
        logger.warning(f"Removed song property {key} from {removed} song(s)")
        return removed

    def add_edge_property(self, key: str, type_name: str, value_text: str) -> int:
        key = self._check_key(key, EDGE_BUILTIN_KEYS, "edge")
        value = parse_value(type_name, value_text)
        updated = self.repository.set_edge_property(key, value)
        logger.info(f"Set edge property {key}={value!r} on {updated} edge(s)")
        return updated

    def remove_edge_property(self, key: str) -> int:
        key = self._check_key(key, EDGE_BUILTIN_KEYS, "edge")
        removed = self.repository.remove_edge_property(key)
        logger.warning(f"Removed edge property {key} from {removed} edge(s)")
        return removed
