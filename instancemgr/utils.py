"""String, slice and nested-field helpers shared across the controller."""

from __future__ import annotations

import base64
import binascii
import copy
import hashlib
import re
from collections.abc import Iterable, Mapping, MutableMapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

BASE64_PATTERN = (
    r"^(?:[A-Za-z0-9+\/]{4})*"
    r"(?:[A-Za-z0-9+\/]{2}==|[A-Za-z0-9+\/]{3}=|[A-Za-z0-9+\/]{4})$"
)
PERCENT_PATTERN = r"^[0-9]+%$"

_BASE64_RE = re.compile(BASE64_PATTERN)
_PERCENT_RE = re.compile(PERCENT_PATTERN)
_TIME_FORMAT = "%Y%m%d%H%M%S"


def is_base64(value: str) -> bool:
    """Return True if *value* looks like standard padded base64."""
    return _BASE64_RE.fullmatch(value) is not None


def get_decoded_string(value: str) -> str:
    """Decode *value* if it is base64, otherwise return it unchanged."""
    if not is_base64(value):
        return value
    try:
        decoded = base64.b64decode(value, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"invalid base64 data: {exc}") from exc
    return decoded.decode("utf-8", errors="replace")


def _fold(value: str) -> str:
    return value.casefold()


def contains_equal_fold(items: Iterable[str] | None, value: str) -> bool:
    """Return True if *items* holds *value*, ignoring case."""
    target = _fold(value)
    return any(_fold(item) == target for item in items or ())


def contains_equal_fold_substring(value: str, substring: str) -> bool:
    """Return True if *substring* occurs in *value*, ignoring case."""
    return substring.lower() in value.lower()


def string_md5(value: str) -> str:
    """Return the hex MD5 digest of *value*."""
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def field_path(path: str) -> list[str]:
    """Split a dotted field path into its keys."""
    return path.split(".")


def field_path_string(*args: str) -> str:
    """Join keys into a dotted field path."""
    return ".".join(args)


def field_value(path: str, obj: Mapping[str, Any]) -> Any:
    """Return a deep copy of the value at dotted *path* in *obj*, or None."""
    node: Any = obj
    for key in field_path(path):
        if not isinstance(node, Mapping) or key not in node:
            return None
        node = node[key]
    return copy.deepcopy(node)


def set_field_value(path: str, obj: MutableMapping[str, Any], value: Any) -> None:
    """Set *value* at dotted *path* in *obj*, creating intermediate mappings."""
    keys = field_path(path)
    node = obj
    for depth, key in enumerate(keys[:-1], start=1):
        if key in node:
            child = node[key]
            if not isinstance(child, MutableMapping):
                location = field_path_string(*keys[:depth])
                raise ValueError(
                    f"value cannot be set because {location} is not a mapping"
                )
        else:
            child = {}
            node[key] = child
        node = child
    node[keys[-1]] = copy.deepcopy(value)


def append_unique(items: list[Any], item: Any) -> list[Any]:
    """Return *items* with *item* appended unless an equal item is present."""
    if item in items:
        return items
    return [*items, item]


def _index_string(entry: Any, index_key: str) -> str | None:
    found = None
    if isinstance(entry, Mapping):
        for key, value in entry.items():
            if isinstance(key, str) and _fold(key) == _fold(index_key):
                found = value if isinstance(value, str) else str(value)
    return found


def append_unique_index(
    items: list[Any], item: Any, index_key: str, override: bool
) -> list[Any]:
    """Append mapping *item* unless an entry shares its *index_key* value.

    When a matching entry exists and *override* is set, it is replaced.
    Non-mapping items are ignored.
    """
    if not isinstance(item, Mapping):
        return items
    wanted = _index_string(item, index_key) or ""
    current = ""
    for position, entry in enumerate(items):
        found = _index_string(entry, index_key)
        if found is not None:
            current = found
        if _fold(wanted) == _fold(current):
            if override:
                result = list(items)
                result[position] = item
                return result
            return items
    return [*items, item]


def merge_slice_by_unique(first: list[Any], second: Iterable[Any]) -> list[Any]:
    """Append every element of *second* not already in *first*."""
    merged = first
    for element in second:
        merged = append_unique(merged, element)
    return merged


def merge_slice_by_index(
    first: list[Any], second: Iterable[Any], index_key: str, override: bool
) -> list[Any]:
    """Merge mappings from *second* into *first*, keyed by *index_key*."""
    merged = first
    for element in second:
        merged = append_unique_index(merged, element, index_key, override)
    return merged


def string_slice_equal_fold(x: list[str], y: list[str]) -> bool:
    """Return True if both lists have equal length and every x is in y, ignoring case."""
    if len(x) != len(y):
        return False
    return all(contains_equal_fold(y, element) for element in x)


def string_slice_equals(x: list[str] | None, y: list[str] | None) -> bool:
    """Return True if both lists hold the same strings in any order."""
    return sorted(x or []) == sorted(y or [])


def string_slice_contains(x: Iterable[str], y: Iterable[str]) -> bool:
    """Return True if every string of *x* is in *y*."""
    pool = set(y)
    return all(element in pool for element in x)


def int_in_range(value: int, low: int, high: int) -> bool:
    """Return True if low <= value <= high."""
    return low <= value <= high


def get_last_element_by(value: str, sep: str) -> str:
    """Return the part of *value* after the last *sep*."""
    if not sep:
        return value[-1]
    return value.split(sep)[-1]


def concatenate_list(items: Iterable[str], delimiter: str) -> str:
    """Join the whitespace-separated words of *items* with *delimiter*."""
    text = "[" + " ".join(items) + "]"
    return delimiter.join(text.split()).strip("[]")


def read_file(path: str | Path) -> bytes:
    """Return the contents of the file at *path*."""
    return Path(path).read_bytes()


def get_time_string() -> str:
    """Return the current UTC time as YYYYMMDDhhmmss."""
    return datetime.now(timezone.utc).strftime(_TIME_FORMAT)


def difference(a: Iterable[str], b: Iterable[str]) -> list[str]:
    """Return the elements of *a* that are not in *b*, keeping order."""
    excluded = set(b)
    return [item for item in a if item not in excluded]


def is_valid_percent(percent: str) -> None:
    """Raise ValueError unless *percent* looks like '<digits>%'."""
    if _PERCENT_RE.fullmatch(percent) is None:
        raise ValueError(f"invalid percent value {percent}")


def int_or_str_value(value: int | str) -> int:
    """Return the number held by an int-or-percent value; invalid strings give 0."""
    if isinstance(value, str):
        try:
            is_valid_percent(value)
        except ValueError:
            return 0
        return int(value[:-1])
    return int(value)