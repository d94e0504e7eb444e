"""
Request builders for the three user actions.

Each virtual-user iteration performs the same three actions against the
recommendation stack:

1. **Ingest** -- ``POST /events`` with a randomised interaction event.
2. **Recommend** -- ``GET /recommendations`` for a random user.
3. **Popular** -- ``GET /popular`` with no user context.

Builders are pure: they take an explicit ``random.Random`` plus the
virtual-user id and iteration counter and return an immutable
:class:`RequestSpec`.  Seeding the generator makes a whole request
sequence reproducible.

Key Concepts Demonstrated:
- Randomised payloads to defeat server-side caching
- Collision-free session ids derived from (user, iteration) without any
  shared counter
"""

from __future__ import annotations

import enum
import json
import random
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any
from urllib.parse import urlencode

USER_ID_RANGE = (1, 1000)
ITEM_ID_RANGE = (1, 100)

EVENT_TYPE_VIEW = "VIEW"
EVENT_TYPE_CLICK = "CLICK"
EVENT_TYPE_CART = "CART"
EVENT_TYPE_PURCHASE = "PURCHASE"

EVENT_TYPES: tuple[str, ...] = (
    EVENT_TYPE_VIEW,
    EVENT_TYPE_CLICK,
    EVENT_TYPE_CART,
    EVENT_TYPE_PURCHASE,
)

JSON_HEADERS: Mapping[str, str] = MappingProxyType({"Content-Type": "application/json"})


class Action(enum.Enum):
    """The logical steps of one iteration, in execution order."""

    INGEST = "ingest"
    RECOMMEND = "recommend"
    POPULAR = "popular"


# (method, stable statistics label) per action.
REQUEST_LABELS: dict[Action, tuple[str, str]] = {
    Action.INGEST: ("POST", "/events [POST]"),
    Action.RECOMMEND: ("GET", "/recommendations [GET]"),
    Action.POPULAR: ("GET", "/popular [GET]"),
}


@dataclass(frozen=True)
class RequestSpec:
    """
    One fully-built HTTP request.

    Attributes:
        action: The action this request performs.
        method: HTTP method.
        url: Absolute URL including the query string.
        headers: Read-only header mapping.
        body: Encoded request body, or ``None`` for GETs.
        name: Stable label used to group statistics (query strings vary
            per request, so the URL itself is a poor grouping key).
    """

    action: Action
    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    body: bytes | None = None
    name: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.headers, MappingProxyType):
            object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))


@dataclass(frozen=True)
class EventPayload:
    """A single user interaction as accepted by the ingestion service."""

    user_id: int
    item_id: int
    event_type: str
    session_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "item_id": self.item_id,
            "event_type": self.event_type,
            "session_id": self.session_id,
        }


def make_session_id(vu_id: int, iteration: int) -> str:
    """Return the session id for one (virtual user, iteration) pair."""
    return f"session_{vu_id}_{iteration}"


def random_user_id(rng: random.Random) -> int:
    return rng.randint(*USER_ID_RANGE)


def random_event_payload(rng: random.Random, vu_id: int, iteration: int) -> EventPayload:
    """
    Build an event with uniformly random user, item, and event type.

    Args:
        rng: Random source; pass a seeded instance for reproducible runs.
        vu_id: Identifier of the virtual user sending the event.
        iteration: Zero-based iteration counter of that virtual user.

    Returns:
        A new :class:`EventPayload`.
    """
    return EventPayload(
        user_id=random_user_id(rng),
        item_id=rng.randint(*ITEM_ID_RANGE),
        event_type=rng.choice(EVENT_TYPES),
        session_id=make_session_id(vu_id, iteration),
    )


class RequestScripts:
    """
    Build the request for each action against a fixed pair of services.

    Args:
        ingest_url: Base URL of the event ingestion service.
        api_url: Base URL of the recommendation API.
        recommend_count: ``count`` query parameter for recommendations.
        popular_count: ``count`` query parameter for popular items.
        popular_category: Optional ``category`` filter for popular items.
    """

    def __init__(
        self,
        ingest_url: str,
        api_url: str,
        *,
        recommend_count: int = 10,
        popular_count: int = 20,
        popular_category: str | None = None,
    ) -> None:
        if recommend_count <= 0 or popular_count <= 0:
            raise ValueError("Result counts must be positive")
        self.ingest_url = ingest_url.rstrip("/")
        self.api_url = api_url.rstrip("/")
        self.recommend_count = recommend_count
        self.popular_count = popular_count
        self.popular_category = popular_category

    @classmethod
    def from_config(cls, config_class: Any) -> RequestScripts:
        return cls(
            config_class.BASE_URL,
            config_class.API_URL,
            recommend_count=config_class.RECOMMEND_COUNT,
            popular_count=config_class.POPULAR_COUNT,
            popular_category=config_class.POPULAR_CATEGORY,
        )

    def ingest(self, rng: random.Random, vu_id: int, iteration: int) -> RequestSpec:
        payload = random_event_payload(rng, vu_id, iteration)
        return RequestSpec(
            action=Action.INGEST,
            method="POST",
            url=f"{self.ingest_url}/events",
            headers=JSON_HEADERS,
            body=json.dumps(payload.to_dict()).encode("utf-8"),
            name=REQUEST_LABELS[Action.INGEST][1],
        )

    def recommend(self, rng: random.Random) -> RequestSpec:
        query = urlencode({"user_id": random_user_id(rng), "count": self.recommend_count})
        return RequestSpec(
            action=Action.RECOMMEND,
            method="GET",
            url=f"{self.api_url}/recommendations?{query}",
            name=REQUEST_LABELS[Action.RECOMMEND][1],
        )

    def popular(self) -> RequestSpec:
        params: dict[str, Any] = {"count": self.popular_count}
        if self.popular_category:
            params["category"] = self.popular_category
        return RequestSpec(
            action=Action.POPULAR,
            method="GET",
            url=f"{self.api_url}/popular?{urlencode(params)}",
            name=REQUEST_LABELS[Action.POPULAR][1],
        )

    def build(self, action: Action, rng: random.Random, vu_id: int, iteration: int) -> RequestSpec:
        """Dispatch to the builder for *action*."""
        if action is Action.INGEST:
            return self.ingest(rng, vu_id, iteration)
        if action is Action.RECOMMEND:
            return self.recommend(rng)
        if action is Action.POPULAR:
            return self.popular()
        raise ValueError(f"Unknown action: {action!r}")
