"""Helpers for compact debug logging of resource payloads.

Resource data is whatever a producer returned, which may be large API
responses or binary blobs. This module renders a bounded copy of it
before it is emitted in DEBUG logs.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel

_MAX_ITEMS = 20


def summarize_for_log(value: Any, *, max_string: int = 120, _depth: int = 0) -> Any:
    """Return a bounded copy of *value* suitable for debug logs."""
    if _depth > 6:
        return "<max-depth>"

    if value is None:
        return None

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, BaseModel):
        value = value.model_dump()

    if isinstance(value, Mapping):
        summarized: dict[str, Any] = {}
        for index, (k, v) in enumerate(value.items()):
            if index >= _MAX_ITEMS:
                summarized["…"] = f"<{len(value) - _MAX_ITEMS} more>"
                break
            summarized[str(k)] = summarize_for_log(v, max_string=max_string, _depth=_depth + 1)
        return summarized

    if isinstance(value, Sequence):
        items = [summarize_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value[:_MAX_ITEMS]]
        if len(value) > _MAX_ITEMS:
            items.append(f"<{len(value) - _MAX_ITEMS} more>")
        return items

    # Fallback: represent unknown objects without dumping internals.
    return f"<{type(value).__name__}>"
