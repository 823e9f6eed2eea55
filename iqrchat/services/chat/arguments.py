"""Tolerant parsing of streamed tool-call argument buffers.

Models occasionally emit malformed argument JSON: stray text around the
object, several objects back to back (``{"name": "Sam"}{"age": 22}``) or
over-escaped quotes.  :func:`parse_tool_arguments` tries four strategies in
order and raises :class:`ToolArgumentParseError` only when all of them fail.
"""

from __future__ import annotations

import json
import re
from typing import Any

import structlog

from iqrchat.utils.errors import ToolArgumentParseError

logger = structlog.get_logger(logger_name=__name__)

_QUOTED_KEY = re.compile(r"(['\"])(\w+)(['\"]):")


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def _outermost_braces(buffer: str) -> dict[str, Any] | None:
    start = buffer.find("{")
    end = buffer.rfind("}")
    if start == -1 or end <= start:
        return None
    return _loads_object(buffer[start : end + 1])


def _merge_objects(buffer: str) -> dict[str, Any] | None:
    """Parse ``{...}{...}`` sequences and merge their keys left to right."""
    merged: dict[str, Any] = {}
    found = False
    position = 0
    while True:
        start = buffer.find("{", position)
        if start == -1:
            break
        end = buffer.find("}", start)
        if end == -1:
            break
        piece = _loads_object(buffer[start : end + 1])
        if piece is not None:
            merged.update(piece)
            found = True
        position = end + 1
    return merged if found else None


def _clean_quotes(buffer: str) -> dict[str, Any] | None:
    cleaned = buffer.replace('\\"', '"')
    cleaned = re.sub(r"\s+", " ", cleaned)
    cleaned = cleaned.replace('"{', "{").replace('}"', "}")
    cleaned = _QUOTED_KEY.sub(r'"\2":', cleaned)
    return _loads_object(cleaned)


def parse_tool_arguments(buffer: str) -> dict[str, Any]:
    """Parse a tool-call argument buffer into a dict.

    An empty or whitespace-only buffer means "no arguments" and yields
    ``{}``.

    Raises
    ------
    ToolArgumentParseError
        If no strategy produces a JSON object.
    """
    if not buffer or not buffer.strip():
        return {}

    direct = _loads_object(buffer)
    if direct is not None:
        return direct

    for strategy in (_outermost_braces, _merge_objects, _clean_quotes):
        parsed = strategy(buffer)
        if parsed is not None:
            logger.info("tool_arguments_recovered", strategy=strategy.__name__.lstrip("_"))
            return parsed

    logger.warning("tool_arguments_unparseable", buffer=buffer[:200])
    raise ToolArgumentParseError(f"Could not parse tool arguments: {buffer[:80]!r}")
