"""A flat string-to-string JSON metadata document."""

from __future__ import annotations

import json
from typing import IO, Mapping

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


class CustomJSON:
    """Key/value metadata where each key may be set only once."""

    def __init__(self, data: Mapping[str, str] | None = None) -> None:
        self._data: dict[str, str] | None = dict(data) if data is not None else None

    @classmethod
    def load(cls, source: IO | None) -> "CustomJSON":
        """Read an existing JSON object of strings from ``source``."""
        if source is None:
            return cls()
        parsed = json.loads(source.read())
        if parsed is None:
            return cls()
        if not isinstance(parsed, dict) or not all(
            isinstance(v, str) for v in parsed.values()
        ):
            raise ValueError("metadata must be a JSON object of string values")
        return cls(parsed)

    @property
    def data(self) -> dict[str, str]:
        """A copy of the stored key/value pairs."""
        return dict(self._data or {})

    def add(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``; a key already present is an error."""
        if self._data is None:
            self._data = {}
        if key in self._data:
            raise ValueError(f"key {key} already exists in the metadata")
        self._data[key] = value

    def write(self, out: IO[str]) -> None:
        """Write the metadata as compact JSON with sorted keys."""
        text = json.dumps(
            self._data, sort_keys=True, separators=(",", ":"), ensure_ascii=False
        )
        out.write("".join(_HTML_ESCAPES.get(ch, ch) for ch in text))