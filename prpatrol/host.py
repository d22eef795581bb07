"""Host-side tabs, windows and tab groups.

The browser owns these objects; prpatrol only holds weak references to them
(group ids) and must expect any of them to disappear between two calls.
"""

from __future__ import annotations

import importlib
import itertools
import threading
from dataclasses import dataclass
from typing import Protocol

from .errors import HostOperationError


@dataclass
class Tab:
    id: int
    url: str
    window_id: int
    group_id: int | None = None
    active: bool = False


@dataclass
class TabGroup:
    id: int
    window_id: int
    title: str = ""
    color: str = "grey"


class TabHost(Protocol):
    def get_group(self, group_id: int) -> TabGroup: ...

    def query_groups(self, *, title: str, color: str) -> list[TabGroup]: ...

    def query_tabs(self, *, window_id: int | None = None) -> list[Tab]: ...

    def create_tab(self, url: str, *, window_id: int | None, active: bool = False) -> Tab: ...

    def remove_tabs(self, tab_ids: list[int]) -> None: ...

    def group_tabs(self, tab_ids: list[int], *, group_id: int | None = None) -> int: ...

    def update_group(self, group_id: int, *, title: str, color: str) -> None: ...

    def last_focused_window_id(self) -> int | None: ...

    def set_badge_text(self, text: str) -> None: ...


class MemoryTabHost:
    """A complete in-process host: windows, tabs, groups and a badge.

    Mutating calls are appended to ``operations`` as ``(name, detail)`` tuples.
    Names listed in ``failing`` raise :class:`HostOperationError`, which is how
    tests stand in for a user closing things mid-reconcile.
    """

    def __init__(self) -> None:
        self.tabs: dict[int, Tab] = {}
        self.groups: dict[int, TabGroup] = {}
        self.windows: list[int] = []
        self.focused_window_id: int | None = None
        self.badge_text = ""
        self.operations: list[tuple[str, object]] = []
        self.failing: set[str] = set()
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    def _check(self, name: str) -> None:
        if name in self.failing:
            raise HostOperationError(f"{name} failed")

    # -- test/user-side helpers, not part of TabHost --

    def open_window(self, *, focus: bool = True) -> int:
        with self._lock:
            window_id = next(self._ids)
            self.windows.append(window_id)
            if focus or self.focused_window_id is None:
                self.focused_window_id = window_id
            return window_id

    def close_window(self, window_id: int) -> None:
        with self._lock:
            if window_id not in self.windows:
                return
            self.windows.remove(window_id)
            for tab_id in [t.id for t in self.tabs.values() if t.window_id == window_id]:
                del self.tabs[tab_id]
            for group_id in [g.id for g in self.groups.values() if g.window_id == window_id]:
                del self.groups[group_id]
            if self.focused_window_id == window_id:
                self.focused_window_id = self.windows[0] if self.windows else None

    def open_tab(self, url: str, *, window_id: int | None = None) -> Tab:
        """Open a tab the way a user would; not recorded as an operation."""
        with self._lock:
            target = window_id or self.last_focused_window_id() or self.open_window()
            tab = Tab(id=next(self._ids), url=url, window_id=target)
            self.tabs[tab.id] = tab
            return tab

    def tab_urls(self, group_id: int) -> list[str]:
        with self._lock:
            return sorted(t.url for t in self.tabs.values() if t.group_id == group_id)

    def count(self, name: str) -> int:
        return sum(1 for op, _ in self.operations if op == name)

    # -- TabHost --

    def get_group(self, group_id: int) -> TabGroup:
        with self._lock:
            self._check("get_group")
            group = self.groups.get(group_id)
            if group is None:
                raise HostOperationError(f"No group with id: {group_id}")
            return group

    def query_groups(self, *, title: str, color: str) -> list[TabGroup]:
        with self._lock:
            self._check("query_groups")
            return [g for g in self.groups.values() if g.title == title and g.color == color]

    def query_tabs(self, *, window_id: int | None = None) -> list[Tab]:
        with self._lock:
            self._check("query_tabs")
            return [
                tab
                for tab in self.tabs.values()
                if window_id is None or tab.window_id == window_id
            ]

    def create_tab(self, url: str, *, window_id: int | None, active: bool = False) -> Tab:
        with self._lock:
            self._check("create_tab")
            target = window_id if window_id is not None else self.last_focused_window_id()
            if target is None or target not in self.windows:
                raise HostOperationError(f"No window with id: {target}")
            tab = Tab(id=next(self._ids), url=url, window_id=target, active=active)
            self.tabs[tab.id] = tab
            self.operations.append(("create", url))
            return tab

    def remove_tabs(self, tab_ids: list[int]) -> None:
        with self._lock:
            self._check("remove_tabs")
            missing = [tab_id for tab_id in tab_ids if tab_id not in self.tabs]
            if missing:
                raise HostOperationError(f"No tab with id: {missing[0]}")
            for tab_id in tab_ids:
                tab = self.tabs.pop(tab_id)
                self.operations.append(("remove", tab.url))
            self._drop_empty_groups()

    def group_tabs(self, tab_ids: list[int], *, group_id: int | None = None) -> int:
        with self._lock:
            self._check("group_tabs")
            if not tab_ids:
                raise HostOperationError("No tabs to group")
            missing = [tab_id for tab_id in tab_ids if tab_id not in self.tabs]
            if missing:
                raise HostOperationError(f"No tab with id: {missing[0]}")
            if group_id is None:
                window_id = self.tabs[tab_ids[0]].window_id
                group = TabGroup(id=next(self._ids), window_id=window_id)
                self.groups[group.id] = group
            else:
                group = self.get_group(group_id)
            for tab_id in tab_ids:
                tab = self.tabs[tab_id]
                tab.window_id = group.window_id
                tab.group_id = group.id
            self.operations.append(("group", (group.id, list(tab_ids))))
            self._drop_empty_groups()
            return group.id

    def update_group(self, group_id: int, *, title: str, color: str) -> None:
        with self._lock:
            self._check("update_group")
            group = self.get_group(group_id)
            group.title = title
            group.color = color
            self.operations.append(("update", (group_id, title, color)))

    def last_focused_window_id(self) -> int | None:
        with self._lock:
            if self.focused_window_id is not None:
                return self.focused_window_id
            return self.windows[0] if self.windows else None

    def set_badge_text(self, text: str) -> None:
        with self._lock:
            self.badge_text = text

    def _drop_empty_groups(self) -> None:
        used = {tab.group_id for tab in self.tabs.values()}
        for group_id in [gid for gid in self.groups if gid not in used]:
            del self.groups[group_id]


def remove_group_tabs(host: TabHost, group_id: int | None) -> bool:
    """Close every tab attributed to ``group_id``; False if the host refused."""
    if group_id is None:
        return True
    try:
        tab_ids = [tab.id for tab in host.query_tabs() if tab.group_id == group_id]
        if tab_ids:
            host.remove_tabs(tab_ids)
    except HostOperationError:
        return False
    return True


def load_tab_host(target: str) -> TabHost:
    """Build the host named by config: ``memory`` or ``package.module:factory``."""
    target = (target or "memory").strip()
    if target == "memory":
        host = MemoryTabHost()
        host.open_window()
        return host
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"invalid tab host: {target!r}")
    factory = getattr(importlib.import_module(module_name), attr)
    return factory()

