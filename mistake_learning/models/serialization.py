"""
Dataclass <-> JSON-compatible dict conversion for persistence.

Enums are stored by value, datetimes as ISO strings, nested dataclasses as
dicts, sets as lists. Values JSON cannot represent are stored as their repr.
`from_dict` walks the dataclass type hints to rebuild the tree.
"""

import dataclasses
import typing
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Type, TypeVar, Union

T = TypeVar("T")


def to_dict(obj: Any) -> Any:
    """Convert a dataclass tree into JSON-compatible primitives."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_dict(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [to_dict(v) for v in obj]
    if isinstance(obj, dict):
        return {str(k): to_dict(v) for k, v in obj.items()}
    if isinstance(obj, (set, frozenset)):
        items = [to_dict(v) for v in obj]
        try:
            return sorted(items)
        except TypeError:
            return items
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")
    # Anything else is kept for display only.
    return repr(obj)


def from_dict(cls: Type[T], data: Dict[str, Any]) -> T:
    """Rebuild a dataclass instance from `to_dict` output.

    Unknown keys are ignored and missing keys fall back to field defaults,
    so older snapshots still load after a field is added.
    """
    hints = typing.get_type_hints(cls)
    kwargs = {}
    for f in dataclasses.fields(cls):
        if f.name in data:
            kwargs[f.name] = _convert(hints[f.name], data[f.name])
    return cls(**kwargs)


def _convert(tp: Any, value: Any) -> Any:
    if value is None or tp is Any:
        return value

    origin = typing.get_origin(tp)
    args = typing.get_args(tp)

    if origin is Union:
        candidates = [a for a in args if a is not type(None)]
        return _convert(candidates[0], value) if candidates else value
    if origin in (list, typing.List):
        return [_convert(args[0], v) for v in value] if args else list(value)
    if origin in (tuple, typing.Tuple):
        return tuple(value)
    if origin in (dict, typing.Dict):
        if args:
            return {k: _convert(args[1], v) for k, v in value.items()}
        return dict(value)

    if isinstance(tp, type):
        if issubclass(tp, Enum):
            return tp(value)
        if issubclass(tp, datetime):
            return datetime.fromisoformat(value)
        if dataclasses.is_dataclass(tp):
            return from_dict(tp, value)
    return value
