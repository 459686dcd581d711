from __future__ import annotations

import json
from typing import Any

DEFAULT_SEARCH_LIMIT = 10

# Seconds. Lookups of a single entity change less often than search listings.
WORLD_INFO_TTL = 600
ACTOR_TTL = 300
SCENE_TTL = 120
SEARCH_TTL = 60


def _compose(operation: str, **params: Any) -> str:
    # JSON keeps the parameter boundaries unambiguous, so a ':' inside a
    # query can never make two different requests share a key.
    return f"{operation}:{json.dumps(params, sort_keys=True, separators=(',', ':'))}"


def _normalize_query(query: str | None) -> str:
    return (query or "").strip()


class CacheKeys:
    """Deterministic cache keys for the domain read operations."""

    @staticmethod
    def world_info() -> str:
        return "world:info"

    @staticmethod
    def actor(actor_id: str) -> str:
        return _compose("actor", id=actor_id)

    @staticmethod
    def actor_search(
        query: str | None = None,
        type: str | None = None,
        limit: int | None = None,
    ) -> str:
        return _compose(
            "actor:search",
            query=_normalize_query(query),
            type=type or None,
            limit=limit or DEFAULT_SEARCH_LIMIT,
        )

    @staticmethod
    def item_search(
        query: str | None = None,
        type: str | None = None,
        rarity: str | None = None,
        limit: int | None = None,
    ) -> str:
        return _compose(
            "item:search",
            query=_normalize_query(query),
            type=type or None,
            rarity=rarity or None,
            limit=limit or DEFAULT_SEARCH_LIMIT,
        )

    @staticmethod
    def scene(scene_id: str | None = None) -> str:
        return _compose("scene", id=scene_id) if scene_id else "scene:current"
