"""
Label & field selectors, as in the Kubernetes API query parameters.

The selectors are used in three places: in listing (sent to the API as is),
in the routes' filters, and in the trigger matchers (evaluated locally
against the objects in memory). Hence, they are parsed and evaluated here
rather than delegated to the API server.

The selectors are frozen and comparable: the trigger registrations
are de-duplicated by the equality of their selectors.

Supported label syntax: ``k=v``, ``k==v``, ``k!=v``, ``k in (a,b)``,
``k notin (a,b)``, ``k`` (exists), ``!k`` (does not exist).
Supported field syntax: ``a.b.c=v``, ``a.b.c==v``, ``a.b.c!=v``.
"""
import dataclasses
import enum
import re
from collections.abc import Iterable, Mapping
from typing import Any


class Operator(str, enum.Enum):
    EQUALS = '='
    NOT_EQUALS = '!='
    IN = 'in'
    NOT_IN = 'notin'
    EXISTS = 'exists'
    DOES_NOT_EXIST = '!'


@dataclasses.dataclass(frozen=True, order=True)
class Requirement:
    key: str
    operator: Operator
    values: tuple[str, ...] = ()

    def __str__(self) -> str:
        match self.operator:
            case Operator.EQUALS | Operator.NOT_EQUALS:
                return f"{self.key}{self.operator.value}{self.values[0]}"
            case Operator.IN | Operator.NOT_IN:
                return f"{self.key} {self.operator.value} ({','.join(self.values)})"
            case Operator.EXISTS:
                return self.key
            case Operator.DOES_NOT_EXIST:
                return f"!{self.key}"
        raise ValueError(f"Unsupported operator: {self.operator!r}")

    def matches(self, labels: Mapping[str, str]) -> bool:
        match self.operator:
            case Operator.EQUALS | Operator.IN:
                return self.key in labels and labels[self.key] in self.values
            case Operator.NOT_EQUALS | Operator.NOT_IN:
                return self.key not in labels or labels[self.key] not in self.values
            case Operator.EXISTS:
                return self.key in labels
            case Operator.DOES_NOT_EXIST:
                return self.key not in labels
        raise ValueError(f"Unsupported operator: {self.operator!r}")


@dataclasses.dataclass(frozen=True)
class LabelSelector:
    requirements: tuple[Requirement, ...] = ()

    def __str__(self) -> str:
        return ','.join(str(requirement) for requirement in self.requirements)

    def __bool__(self) -> bool:
        return bool(self.requirements)

    def matches(self, labels: Mapping[str, str] | None) -> bool:
        labels = labels or {}
        return all(requirement.matches(labels) for requirement in self.requirements)

    @classmethod
    def from_mapping(cls, labels: Mapping[str, str]) -> "LabelSelector":
        return cls(tuple(sorted(
            Requirement(key, Operator.EQUALS, (value,)) for key, value in labels.items()
        )))

    @classmethod
    def parse(cls, text: str) -> "LabelSelector":
        return cls(tuple(sorted(_parse_label_requirement(part) for part in _split(text))))


@dataclasses.dataclass(frozen=True)
class FieldSelector:
    requirements: tuple[Requirement, ...] = ()

    def __str__(self) -> str:
        return ','.join(str(requirement) for requirement in self.requirements)

    def __bool__(self) -> bool:
        return bool(self.requirements)

    def matches(self, body: Mapping[str, Any] | None) -> bool:
        if body is None:
            return False
        for requirement in self.requirements:
            value = _resolve_field(body, requirement.key)
            if requirement.operator is Operator.EQUALS and value != requirement.values[0]:
                return False
            if requirement.operator is Operator.NOT_EQUALS and value == requirement.values[0]:
                return False
        return True

    @classmethod
    def from_mapping(cls, fields: Mapping[str, str]) -> "FieldSelector":
        return cls(tuple(sorted(
            Requirement(key, Operator.EQUALS, (value,)) for key, value in fields.items()
        )))

    @classmethod
    def parse(cls, text: str) -> "FieldSelector":
        requirements: list[Requirement] = []
        for part in _split(text):
            match = re.fullmatch(r'\s*([^=!\s]+)\s*(==|=|!=)\s*(.*?)\s*', part)
            if match is None:
                raise ValueError(f"Unsupported field selector: {part!r}")
            key, op, value = match.groups()
            operator = Operator.NOT_EQUALS if op == '!=' else Operator.EQUALS
            requirements.append(Requirement(key, operator, (value,)))
        return cls(tuple(sorted(requirements)))


def _split(text: str) -> Iterable[str]:
    """ Split by commas, but not inside the parentheses of the set-based requirements. """
    depth = 0
    start = 0
    for idx, char in enumerate(text):
        if char == '(':
            depth += 1
        elif char == ')':
            depth -= 1
        elif char == ',' and depth == 0:
            if text[start:idx].strip():
                yield text[start:idx]
            start = idx + 1
    if text[start:].strip():
        yield text[start:]


def _parse_label_requirement(part: str) -> Requirement:
    part = part.strip()
    if match := re.fullmatch(r'(\S+)\s+(in|notin)\s+\((.*)\)', part):
        key, op, values = match.groups()
        items = tuple(sorted(value.strip() for value in values.split(',') if value.strip()))
        return Requirement(key, Operator.IN if op == 'in' else Operator.NOT_IN, items)
    if match := re.fullmatch(r'([^=!\s]+)\s*(==|=|!=)\s*(\S*)', part):
        key, op, value = match.groups()
        return Requirement(key, Operator.NOT_EQUALS if op == '!=' else Operator.EQUALS, (value,))
    if match := re.fullmatch(r'!\s*(\S+)', part):
        return Requirement(match.group(1), Operator.DOES_NOT_EXIST)
    if re.fullmatch(r'\S+', part):
        return Requirement(part, Operator.EXISTS)
    raise ValueError(f"Unsupported label selector: {part!r}")


def _resolve_field(body: Mapping[str, Any], path: str) -> str:
    value: Any = body
    for key in path.split('.'):
        if not isinstance(value, Mapping) or key not in value:
            return ''
        value = value[key]
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return '' if value is None else str(value)
