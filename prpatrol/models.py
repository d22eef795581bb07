from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, TypedDict

COLOR_PALETTE: tuple[str, ...] = (
    "grey",
    "blue",
    "red",
    "yellow",
    "green",
    "pink",
    "purple",
    "cyan",
)

DEFAULT_GROUP_NAME = "Reviews"
DEFAULT_GROUP_COLOR = "blue"
DEFAULT_GROUP_QUERY = "is:pr is:open review-requested:@me"

_TRAILING_SLASHES = re.compile(r"/+$")


def normalize_url(url: str) -> str:
    return _TRAILING_SLASHES.sub("", url or "")


class GroupConfig(TypedDict):
    id: str
    name: str
    color: str
    query: str


@dataclass(frozen=True)
class ResultItem:
    url: str
    title: str
    number: int


@dataclass
class Group:
    id: str
    name: str
    color: str
    query: str
    host_group_id: int | None = None
    result_count: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "query": self.query,
            "host_group_id": self.host_group_id,
            "result_count": self.result_count,
            "last_error": self.last_error,
        }

    def to_config(self) -> GroupConfig:
        return {"id": self.id, "name": self.name, "color": self.color, "query": self.query}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Group:
        host_group_id = data.get("host_group_id")
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            color=str(data.get("color") or DEFAULT_GROUP_COLOR),
            query=str(data.get("query") or ""),
            host_group_id=int(host_group_id) if host_group_id is not None else None,
            result_count=int(data.get("result_count") or 0),
            last_error=data.get("last_error"),
        )
