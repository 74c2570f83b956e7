"""Explicit per-request ambient data.

Producers never read request-scoped values from thread-locals or globals.
The executor hands each producer a RequestContext (directly for dynamic
producers, guarded for cached ones) so that reads of caller-specific data
are mechanically detectable.
"""

from __future__ import annotations

from typing import Any, Iterator, Mapping


class AmbientDataAccessed(Exception):
    """Internal signal: a cached producer read per-request data.

    Raised by GuardedRequestContext and handled inside the cache store,
    which demotes the key to dynamic and recomputes per caller.
    """

    def __init__(self, name: str):
        super().__init__(f"cached producer read request data {name!r}")
        self.name = name


class RequestContext:
    """Immutable bag of caller-specific values (user, locale, cookies, ...)."""

    def __init__(self, values: Mapping[str, Any] | None = None, **kwargs: Any):
        data = dict(values or {})
        data.update(kwargs)
        self._values = data

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def as_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def __repr__(self) -> str:
        return f"RequestContext({sorted(self._values)})"


EMPTY_CONTEXT = RequestContext()


class GuardedRequestContext(RequestContext):
    """Context given to cached producers: any read raises AmbientDataAccessed.

    The first name read is remembered in `accessed`, so a producer that
    swallows the exception is still detected after it returns.
    """

    def __init__(self) -> None:
        super().__init__()
        self.accessed: str | None = None

    def _touch(self, name: str) -> AmbientDataAccessed:
        if self.accessed is None:
            self.accessed = name
        return AmbientDataAccessed(name)

    def get(self, name: str, default: Any = None) -> Any:
        raise self._touch(name)

    def __getitem__(self, name: str) -> Any:
        raise self._touch(name)

    def __contains__(self, name: object) -> bool:
        raise self._touch(str(name))

    def __iter__(self) -> Iterator[str]:
        raise self._touch("*")

    def __len__(self) -> int:
        raise self._touch("*")

    def __bool__(self) -> bool:
        return True

    def as_dict(self) -> dict[str, Any]:
        raise self._touch("*")

    def __repr__(self) -> str:
        return "GuardedRequestContext()"
