"""JSON abstraction.

The account service wraps some of its JSON bodies in a ``&&&START&&&``
prefix that has to go before parsing, :func:`loads_response` takes care
of that for every caller.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

try:
    import orjson

    def dumps(
        obj: Any, *, default: Callable | None = None, indent: bool = False
    ) -> str:
        """Dump JSON."""
        return orjson.dumps(
            obj, default=default, option=orjson.OPT_INDENT_2 if indent else None
        ).decode()

    loads = orjson.loads
except ImportError:
    import json

    def dumps(
        obj: Any, *, default: Callable | None = None, indent: bool = False
    ) -> str:
        """Dump JSON."""
        # Separators specified for consistency with orjson
        return json.dumps(
            obj, default=default, separators=(",", ":"), indent=2 if indent else None
        )

    loads = json.loads


START_MARKER = "&&&START&&&"


def loads_response(text: str | bytes) -> Any:
    """Parse a cloud response body, dropping the start marker if present."""
    if isinstance(text, bytes):
        text = text.decode()
    return loads(text.replace(START_MARKER, "", 1))


try:
    from mashumaro.mixins.orjson import DataClassORJSONMixin

    DataClassJSONMixin = DataClassORJSONMixin
except ImportError:
    from mashumaro.mixins.json import DataClassJSONMixin as JSONMixin

    DataClassJSONMixin = JSONMixin  # type: ignore[assignment, misc]
