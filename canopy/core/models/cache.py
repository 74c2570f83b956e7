"""Cache lifetime models.

- Tier: the caching lifetime class of a computed node
- StaleMode: what a reader does once a runtime-static entry has expired
- CachePolicy: per-call expiry/tagging policy handed to the cache store
- CacheStats: counters exposed by CacheStore.stats()
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Tier(str, Enum):
    """Caching lifetime, ordered from least to most dynamic."""

    BUILD_STATIC = "build_static"
    RUNTIME_STATIC = "runtime_static"
    DYNAMIC = "dynamic"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    @property
    def cacheable(self) -> bool:
        return self is not Tier.DYNAMIC

    def combine(self, other: "Tier") -> "Tier":
        """Return the more dynamic of the two tiers."""
        return self if self.rank >= other.rank else other


_TIER_RANK = {
    Tier.BUILD_STATIC: 0,
    Tier.RUNTIME_STATIC: 1,
    Tier.DYNAMIC: 2,
}


class StaleMode(str, Enum):
    """Behavior of the first read after a runtime-static entry expires."""

    SERVE_STALE = "serve_stale"  # return old value, refresh in background
    BLOCK = "block"  # wait for the fresh value


class CachePolicy(BaseModel):
    """Expiry and grouping policy for one get_or_compute call."""

    model_config = ConfigDict(frozen=True)

    tier: Tier = Tier.RUNTIME_STATIC
    revalidate_after: float | None = Field(
        default=None,
        description="Seconds before a runtime-static entry must be revalidated",
    )
    stale_mode: StaleMode = StaleMode.SERVE_STALE
    tags: frozenset[str] = frozenset()

    @classmethod
    def build_static(cls, tags: frozenset[str] | set[str] = frozenset()) -> "CachePolicy":
        return cls(tier=Tier.BUILD_STATIC, tags=frozenset(tags))

    @classmethod
    def runtime_static(
        cls,
        revalidate_after: float,
        stale_mode: StaleMode = StaleMode.SERVE_STALE,
        tags: frozenset[str] | set[str] = frozenset(),
    ) -> "CachePolicy":
        return cls(
            tier=Tier.RUNTIME_STATIC,
            revalidate_after=revalidate_after,
            stale_mode=stale_mode,
            tags=frozenset(tags),
        )

    @classmethod
    def dynamic(cls) -> "CachePolicy":
        return cls(tier=Tier.DYNAMIC)


class CacheStats(BaseModel):
    """Accumulated cache counters."""

    hits: int = 0
    misses: int = 0
    coalesced: int = 0
    stale_served: int = 0
    computations: int = 0
    failures: int = 0
    invalidations: int = 0
    demotions: int = 0
    entries: int = 0
    in_flight: int = 0
