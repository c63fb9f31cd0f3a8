"""
Some basic dicts and field-in-a-dict manipulation helpers.
"""
import copy
from collections.abc import Iterable, Mapping, MutableMapping
from typing import Any

FieldPath = tuple[str, ...]
FieldSpec = str | FieldPath | list[str]


def parse_field(
        field: FieldSpec | None,
) -> FieldPath:
    """
    Convert any field into a tuple of nested sub-fields.

    Supported notations:

    * ``None`` (for root of a dict).
    * ``"field.subfield"``
    * ``("field", "subfield")``
    * ``["field", "subfield"]``
    """
    if field is None:
        return tuple()
    elif isinstance(field, str):
        return tuple(field.split('.'))
    elif isinstance(field, (list, tuple)):
        return tuple(field)
    else:
        raise ValueError(f"Field must be either a str, or a list/tuple. Got {field!r}")


def resolve(
        d: Mapping[Any, Any] | None,
        field: FieldSpec,
        default: Any = None,
) -> Any:
    """
    Retrieve a nested sub-field from a dict; the default if any of the levels is absent.
    """
    path = parse_field(field)
    result: Any = d
    for key in path:
        if not isinstance(result, Mapping) or key not in result:
            return default
        result = result[key]
    return result


def remove(
        d: MutableMapping[Any, Any],
        field: FieldSpec,
) -> None:
    """
    Remove a nested sub-field from a dict, if it is there.
    """
    path = parse_field(field)
    parent = resolve(d, path[:-1])
    if isinstance(parent, MutableMapping):
        parent.pop(path[-1], None)


def semantically_equal(a: Any, b: Any) -> bool:
    """
    Compare two JSON-like values, treating ``None``, ``{}``, ``[]`` as equal.

    This is how the absent and the empty fields are considered by the API:
    both mean "not set", so a change between them is not a change.
    The containers are compared key by key, but a non-empty container is
    never equal to ``None``, even if it holds only the empty values.
    """
    if _is_empty(a) and _is_empty(b):
        return True
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        keys = set(a) | set(b)
        return all(semantically_equal(a.get(key), b.get(key)) for key in keys)
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(semantically_equal(x, y) for x, y in zip(a, b))
    return bool(a == b)


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (Mapping, list)) and not value)


def replace_contents(
        target: MutableMapping[str, Any],
        source: Mapping[str, Any],
) -> None:
    """
    Replace the dict's contents in place, keeping the dict's identity.
    """
    target.clear()
    target.update(copy.deepcopy(dict(source)))


def walk(
        objs: Mapping[Any, Any] | Iterable[Mapping[Any, Any]],
) -> Iterable[Mapping[Any, Any]]:
    """
    Iterate over one or many dicts.
    """
    if isinstance(objs, Mapping):
        yield objs
    else:
        yield from objs
