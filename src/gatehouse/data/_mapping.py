"""Row-to-dataclass mapping with type coercion.

SQLite hands back ints for booleans and sometimes strings for numbers;
fields annotated ``int``, ``float``, ``bool`` or ``str`` (optionally
``| None``) are coerced to match. Extra columns are ignored.
"""

import dataclasses
import types
from typing import Any, get_args, get_origin, get_type_hints

_COERCIBLE: dict[type, Any] = {
    int: int,
    float: float,
    bool: lambda v: bool(int(v)) if isinstance(v, str) else bool(v),
    str: str,
}


def _coercion_map(cls: type) -> dict[str, type | None]:
    hints = get_type_hints(cls)
    result: dict[str, type | None] = {}
    for f in dataclasses.fields(cls):
        annotation = hints.get(f.name, f.type)
        if get_origin(annotation) is types.UnionType:
            args = [a for a in get_args(annotation) if a is not type(None)]
            annotation = args[0] if len(args) == 1 else None
        result[f.name] = annotation if annotation in _COERCIBLE else None
    return result


def _coerce(value: Any, target: type | None) -> Any:
    if target is None or value is None:
        return value
    if isinstance(value, target) and not (target is int and isinstance(value, bool)):
        return value
    return _COERCIBLE[target](value)


def map_row[T](cls: type[T], row: dict[str, Any]) -> T:
    """Map a dict row to a dataclass instance.

    Raises ``TypeError`` if *cls* is not a dataclass or required fields
    are missing from the row.
    """
    if not dataclasses.is_dataclass(cls):
        msg = f"{cls.__name__} is not a dataclass; gatehouse.data maps rows to dataclasses"
        raise TypeError(msg)
    coercion = _coercion_map(cls)
    return cls(**{k: _coerce(v, coercion[k]) for k, v in row.items() if k in coercion})
