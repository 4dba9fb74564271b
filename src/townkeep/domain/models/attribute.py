from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from townkeep.domain.errors import SerializationFailure


INT_MIN = -(2**31)
INT_MAX = 2**31 - 1
LONG_MIN = -(2**63)
LONG_MAX = 2**63 - 1


class TypeTag(str, Enum):
    STRING = "string"
    INT = "int"
    DOUBLE = "double"
    BOOLEAN = "boolean"
    LONG = "long"
    FLOAT = "float"
    STRING_ARRAY = "string_array"
    STRING_LIST = "string_list"

    @classmethod
    def parse(cls, raw: str | None) -> TypeTag | None:
        if raw is None:
            return None
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return None


def _check_range(value: int, low: int, high: int, tag: TypeTag) -> None:
    if not low <= value <= high:
        raise ValueError(f"{value} does not fit a {tag.value} attribute")


@dataclass(frozen=True)
class AttributeValue:
    """A stored attribute together with the tag that says how to decode it.

    One case per ``TypeTag``; ``value`` always holds the native Python
    representation of that case (``tuple`` for string arrays, ``list`` for
    string lists).
    """

    tag: TypeTag
    value: Any

    def __post_init__(self) -> None:
        tag = self.tag
        value = self.value
        if tag is TypeTag.STRING:
            if not isinstance(value, str):
                raise TypeError("string attributes hold str values")
        elif tag in (TypeTag.INT, TypeTag.LONG):
            if isinstance(value, bool) or not isinstance(value, int):
                raise TypeError(f"{tag.value} attributes hold int values")
            if tag is TypeTag.INT:
                _check_range(value, INT_MIN, INT_MAX, tag)
            else:
                _check_range(value, LONG_MIN, LONG_MAX, tag)
        elif tag in (TypeTag.DOUBLE, TypeTag.FLOAT):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise TypeError(f"{tag.value} attributes hold float values")
            object.__setattr__(self, "value", float(value))
        elif tag is TypeTag.BOOLEAN:
            if not isinstance(value, bool):
                raise TypeError("boolean attributes hold bool values")
        elif tag is TypeTag.STRING_ARRAY:
            object.__setattr__(self, "value", tuple(_string_items(value, tag)))
        elif tag is TypeTag.STRING_LIST:
            object.__setattr__(self, "value", list(_string_items(value, tag)))
        else:  # pragma: no cover - enum is closed
            raise TypeError(f"Unsupported type tag: {tag!r}")

    @classmethod
    def string(cls, value: str) -> AttributeValue:
        return cls(TypeTag.STRING, value)

    @classmethod
    def int_(cls, value: int) -> AttributeValue:
        return cls(TypeTag.INT, value)

    @classmethod
    def double(cls, value: float) -> AttributeValue:
        return cls(TypeTag.DOUBLE, value)

    @classmethod
    def boolean(cls, value: bool) -> AttributeValue:
        return cls(TypeTag.BOOLEAN, value)

    @classmethod
    def long(cls, value: int) -> AttributeValue:
        return cls(TypeTag.LONG, value)

    @classmethod
    def float_(cls, value: float) -> AttributeValue:
        return cls(TypeTag.FLOAT, value)

    @classmethod
    def string_array(cls, value: Iterable[str]) -> AttributeValue:
        return cls(TypeTag.STRING_ARRAY, tuple(value))

    @classmethod
    def string_list(cls, value: Iterable[str]) -> AttributeValue:
        return cls(TypeTag.STRING_LIST, list(value))

    @classmethod
    def infer(cls, value: Any) -> AttributeValue:
        """Pick the tag a plain Python value would be stored under."""

        if isinstance(value, AttributeValue):
            return value
        if isinstance(value, str):
            return cls.string(value)
        if isinstance(value, bool):
            return cls.boolean(value)
        if isinstance(value, int):
            if INT_MIN <= value <= INT_MAX:
                return cls.int_(value)
            return cls.long(value)
        if isinstance(value, float):
            return cls.double(value)
        if isinstance(value, tuple):
            return cls.string_array(value)
        if isinstance(value, list):
            return cls.string_list(value)
        raise TypeError(f"Cannot store values of type {type(value).__name__}")

    def encode(self) -> str:
        if self.tag is TypeTag.STRING:
            return self.value
        if self.tag in (TypeTag.STRING_ARRAY, TypeTag.STRING_LIST):
            return json.dumps(list(self.value), ensure_ascii=False)
        return json.dumps(self.value)

    @classmethod
    def decode(cls, tag: TypeTag, raw: str | None) -> AttributeValue:
        if raw is None:
            raise SerializationFailure(f"No stored text for {tag.value} attribute")
        if tag is TypeTag.STRING:
            return cls.string(str(raw))

        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise SerializationFailure(f"Malformed {tag.value} attribute text: {raw!r}") from exc

        try:
            if tag in (TypeTag.INT, TypeTag.LONG):
                if isinstance(parsed, float) and parsed.is_integer():
                    parsed = int(parsed)
                return cls(tag, parsed)
            if tag in (TypeTag.DOUBLE, TypeTag.FLOAT, TypeTag.BOOLEAN):
                return cls(tag, parsed)
            if tag in (TypeTag.STRING_ARRAY, TypeTag.STRING_LIST):
                if not isinstance(parsed, list):
                    raise TypeError(f"{tag.value} attributes hold JSON arrays")
                return cls(tag, parsed)
        except (TypeError, ValueError) as exc:
            raise SerializationFailure(f"Stored text {raw!r} is not a valid {tag.value}") from exc
        raise SerializationFailure(f"Unsupported type tag: {tag!r}")  # pragma: no cover


def _string_items(value: Any, tag: TypeTag) -> list[str]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise TypeError(f"{tag.value} attributes hold a sequence of str")
    items = list(value)
    if not all(isinstance(item, str) for item in items):
        raise TypeError(f"{tag.value} attributes hold only str items")
    return items
