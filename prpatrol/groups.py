from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from .errors import GroupNotFound, ValidationError
from .host import TabHost, remove_group_tabs
from .models import (
    COLOR_PALETTE,
    DEFAULT_GROUP_COLOR,
    DEFAULT_GROUP_NAME,
    DEFAULT_GROUP_QUERY,
    Group,
)
from .state import StateStore

logger = logging.getLogger(__name__)

GROUPS_KEY = "groups"
# Flat keys from the single-group schema.
LEGACY_GROUP_KEYS = ("groupId", "prCount", "lastError")


@dataclass(frozen=True)
class SaveResult:
    groups: list[Group]
    # New groups and groups whose query changed; they need an immediate poll.
    dirty_ids: set[str] = field(default_factory=set)
    removed_ids: set[str] = field(default_factory=set)


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def validate_groups(incoming: Any) -> list[Group]:
    """Check a whole batch of group configs; nothing is returned unless all pass."""
    if not isinstance(incoming, list) or not incoming:
        raise ValidationError("At least one group is required")
    groups: list[Group] = []
    seen_ids: set[str] = set()
    for raw in incoming:
        if not isinstance(raw, Mapping):
            raise ValidationError("Group must be an object")
        group_id = _text(raw.get("id"))
        if not group_id:
            raise ValidationError("Group id is required")
        if group_id in seen_ids:
            raise ValidationError(f"Duplicate group id: {group_id}")
        seen_ids.add(group_id)
        name = _text(raw.get("name"))
        if not name:
            raise ValidationError("Group name cannot be empty")
        query = _text(raw.get("query"))
        if not query:
            raise ValidationError("Group query cannot be empty")
        color = raw.get("color")
        if color not in COLOR_PALETTE:
            raise ValidationError(f"Invalid color: {color}")
        groups.append(Group(id=group_id, name=name, color=str(color), query=query))
    return groups


class GroupStore:
    """The persisted list of groups.

    ``lock`` serializes every writer of the groups document: editor mutations
    here and whole poll passes in the orchestrator.
    """

    def __init__(self, state: StateStore, host: TabHost) -> None:
        self.state = state
        self.host = host
        self.lock = threading.RLock()

    def list_groups(self) -> list[Group]:
        raw = self.state.get(GROUPS_KEY) or []
        return [Group.from_dict(item) for item in raw if isinstance(item, dict)]

    def get(self, group_id: str) -> Group | None:
        for group in self.list_groups():
            if group.id == group_id:
                return group
        return None

    def replace(self, groups: Sequence[Group], *, also: Mapping[str, Any] | None = None) -> None:
        """Persist ``groups`` as one document, with optional extra keys in the same write."""
        values: dict[str, Any] = {GROUPS_KEY: [group.to_dict() for group in groups]}
        if also:
            values.update(also)
        with self.lock:
            self.state.update(values)

    def save(self, incoming: Any) -> SaveResult:
        validated = validate_groups(incoming)
        with self.lock:
            existing = {group.id: group for group in self.list_groups()}
            incoming_ids = {group.id for group in validated}

            removed = [group for gid, group in existing.items() if gid not in incoming_ids]
            for group in removed:
                self._teardown(group)

            dirty_ids: set[str] = set()
            stale: list[Group] = []
            for group in validated:
                previous = existing.get(group.id)
                if previous is None:
                    dirty_ids.add(group.id)
                    continue
                if previous.query != group.query:
                    dirty_ids.add(group.id)
                    stale.append(previous)
                    continue
                group.host_group_id = previous.host_group_id
                group.result_count = previous.result_count
                group.last_error = previous.last_error

            self.replace(validated)
            for previous in stale:
                self._teardown(previous)
        return SaveResult(
            groups=validated,
            dirty_ids=dirty_ids,
            removed_ids={group.id for group in removed},
        )

    def delete(self, group_id: str) -> Group:
        if not group_id:
            raise ValidationError("Missing group ID")
        with self.lock:
            groups = self.list_groups()
            target = next((group for group in groups if group.id == group_id), None)
            if target is None:
                raise GroupNotFound("Group not found")
            self._teardown(target)
            self.replace([group for group in groups if group.id != group_id])
        return target

    def migrate_legacy(self) -> bool:
        """Fold the flat single-group keys into the groups document.

        Returns True when a groups document was created. Leftover flat keys are
        dropped whenever a groups document already exists.
        """
        with self.lock:
            data = self.state.get_many([GROUPS_KEY, *LEGACY_GROUP_KEYS])
            if GROUPS_KEY in data:
                leftovers = [key for key in LEGACY_GROUP_KEYS if key in data]
                if leftovers:
                    self.state.remove(*leftovers)
                return False
            host_group_id = data.get("groupId")
            group = Group(
                id=str(uuid4()),
                name=DEFAULT_GROUP_NAME,
                color=DEFAULT_GROUP_COLOR,
                query=DEFAULT_GROUP_QUERY,
                host_group_id=int(host_group_id) if isinstance(host_group_id, int) else None,
                result_count=_legacy_count(data.get("prCount")),
                last_error=data.get("lastError"),
            )
            self.state.update(
                {GROUPS_KEY: [group.to_dict()]},
                remove=LEGACY_GROUP_KEYS,
            )
        logger.info("Migrated single-group settings into group %s", group.id)
        return True

    def _teardown(self, group: Group) -> None:
        if group.host_group_id is None:
            return
        if not remove_group_tabs(self.host, group.host_group_id):
            logger.debug("group %s: host group %s already gone", group.id, group.host_group_id)


def _legacy_count(value: object) -> int:
    if value is None:
        return 0
    try:
        return max(int(value), 0)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid legacy prCount: %r", value)
        return 0


def total_result_count(groups: Iterable[Group]) -> int:
    return sum(group.result_count for group in groups)
