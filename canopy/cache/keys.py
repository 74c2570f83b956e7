"""Cache keys: producer identity plus a canonicalized argument tuple."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel


def canonicalize(value: Any) -> Any:
    """Convert an argument value into a hashable, order-independent form.

    Containers and numbers are tagged with their kind so values that compare
    equal in Python but mean different things (True and 1, 1 and 1.0, a
    mapping and a list of pairs, a set and a list) produce different keys.
    Lists and tuples share the "seq" tag. Enums reduce to their value.

    Raises:
        TypeError: If the value (or something nested in it) is unhashable.
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return canonicalize(value.value)
    if isinstance(value, (str, bytes)):
        return value
    if isinstance(value, (bool, int, float)):
        return (type(value).__name__, value)
    if isinstance(value, BaseModel):
        return ("model", type(value).__name__, canonicalize(value.model_dump(mode="json")))
    if isinstance(value, Mapping):
        items = [(str(k), canonicalize(v)) for k, v in value.items()]
        return ("map", tuple(sorted(items, key=lambda item: item[0])))
    if isinstance(value, (list, tuple)):
        return ("seq", tuple(canonicalize(v) for v in value))
    if isinstance(value, (set, frozenset)):
        return ("set", tuple(sorted((canonicalize(v) for v in value), key=repr)))
    try:
        hash(value)
    except TypeError:
        raise TypeError(
            f"Cannot build a cache key from unhashable argument of type "
            f"{type(value).__name__}"
        ) from None
    return ("obj", type(value).__qualname__, value)


@dataclass(frozen=True)
class CacheKey:
    """Identity of one memoized computation."""

    producer: str
    args: tuple = ()

    @classmethod
    def of(cls, producer: str, *args: Any, **kwargs: Any) -> "CacheKey":
        """Build a key from positional and keyword arguments.

        Keyword arguments are sorted, so call sites may pass them in any order.
        """
        canon = tuple(canonicalize(a) for a in args)
        if kwargs:
            canon += (canonicalize(kwargs),)
        return cls(producer, canon)

    @classmethod
    def from_mapping(cls, producer: str, args: Mapping[str, Any] | None) -> "CacheKey":
        if not args:
            return cls(producer)
        return cls(producer, canonicalize(dict(args)))

    def __str__(self) -> str:
        if not self.args:
            return f"{self.producer}()"
        return f"{self.producer}{self.args!r}"
