"""JSON-ready conversion of analysis records (camelCase keys, enum values)."""

from __future__ import annotations

import dataclasses
from enum import Enum
from typing import Any

# Field names whose wire name is not the plain camelCase form.
FIELD_ALIASES = {
    "from_tid": "from",
    "to_tid": "to",
}


def camel_case(name: str) -> str:
    if name in FIELD_ALIASES:
        return FIELD_ALIASES[name]
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _key(key: Any) -> str:
    # Enum keys are identifiers already (e.g. block reasons); keep their wire value.
    if isinstance(key, Enum):
        return key.value
    return camel_case(str(key))


def to_jsonable(value: Any) -> Any:
    """Recursively convert dataclasses, enums, tuples and dicts.

    ``None`` dataclass fields are omitted so optional parts stay absent.
    """
    if isinstance(value, Enum):
        return value.value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        out: dict[str, Any] = {}
        for f in dataclasses.fields(value):
            item = getattr(value, f.name)
            if item is None:
                continue
            out[camel_case(f.name)] = to_jsonable(item)
        return out
    if isinstance(value, dict):
        return {_key(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value
