"""Map a group's search results onto a host tab group.

Tabs are matched to results by normalized URL. Only the difference between
what is open and what is wanted is touched: surplus tabs are closed, missing
ones are opened in the background, tabs present on both sides are left alone.

Every host call may fail because the user closed a tab or window while we were
working. Those failures are logged and skipped one call at a time; they never
abort the reconcile and never become the group's ``last_error``.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Sequence

from .errors import HostOperationError
from .host import Tab, TabHost, remove_group_tabs
from .models import Group, ResultItem, normalize_url

logger = logging.getLogger(__name__)


def _unique_items(items: Sequence[ResultItem]) -> list[ResultItem]:
    seen: set[str] = set()
    unique: list[ResultItem] = []
    for item in items:
        if item.url in seen:
            continue
        seen.add(item.url)
        unique.append(item)
    return unique


def resolve_host_group(
    host: TabHost,
    group: Group,
    *,
    claimed: Collection[int] = (),
) -> tuple[int | None, int | None]:
    """Return ``(group_id, window_id)`` for ``group``'s host tab group, if any.

    The cached id is revalidated first; when the host has dropped it, or it now
    belongs to another patrol group, a group with the same title and color that
    no other patrol group claims is adopted.
    """
    if group.host_group_id is not None and group.host_group_id in claimed:
        logger.debug("group %s: host group %s is claimed", group.id, group.host_group_id)
    elif group.host_group_id is not None:
        try:
            tab_group = host.get_group(group.host_group_id)
            return tab_group.id, tab_group.window_id
        except HostOperationError:
            logger.debug("group %s: host group %s is gone", group.id, group.host_group_id)
    try:
        found = host.query_groups(title=group.name, color=group.color)
    except HostOperationError:
        return None, None
    for tab_group in found:
        if tab_group.id in claimed:
            continue
        logger.debug("group %s: adopted host group %s by name", group.id, tab_group.id)
        return tab_group.id, tab_group.window_id
    return None, None


def reconcile(
    host: TabHost,
    group: Group,
    desired: Sequence[ResultItem],
    *,
    claimed: Collection[int] = (),
) -> int | None:
    """Make ``group``'s host tab group show exactly ``desired``.

    ``claimed`` holds host group ids owned by other patrol groups; they are
    never adopted and their tabs are never reused. Returns the host group id to
    persist, or None when the group currently has no host tab group.
    """
    items = _unique_items(desired)
    group_id, window_id = resolve_host_group(host, group, claimed=claimed)

    if not items:
        if group_id is not None and not remove_group_tabs(host, group_id):
            logger.debug("group %s: teardown of host group %s failed", group.id, group_id)
        return None

    if group_id is not None:
        return _sync_existing(host, group, group_id, window_id, items)
    return _create_group(host, group, items, claimed=claimed)


def _sync_existing(
    host: TabHost,
    group: Group,
    group_id: int,
    window_id: int | None,
    items: list[ResultItem],
) -> int | None:
    wanted = {item.url for item in items}
    try:
        tabs = [tab for tab in host.query_tabs(window_id=window_id) if tab.group_id == group_id]
    except HostOperationError:
        logger.debug("group %s: could not list tabs of host group %s", group.id, group_id)
        return group_id

    kept: dict[str, int] = {}
    to_close: list[int] = []
    for tab in tabs:
        url = normalize_url(tab.url)
        if url in wanted and url not in kept:
            kept[url] = tab.id
        else:
            to_close.append(tab.id)

    # Attach before closing: a host drops a group once its last tab goes.
    opened = _open_tabs(host, group, [item for item in items if item.url not in kept], window_id)
    if opened:
        try:
            host.group_tabs([tab.id for tab in opened], group_id=group_id)
        except HostOperationError:
            logger.debug("group %s: attaching new tabs to %s failed", group.id, group_id)
            group_id = _regroup(host, group, [tab.id for tab in opened])
    if to_close:
        try:
            host.remove_tabs(to_close)
        except HostOperationError:
            logger.debug("group %s: closing %d tabs failed", group.id, len(to_close))

    if group_id is not None:
        _apply_label(host, group, group_id)
    logger.debug(
        "group %s: kept=%d closed=%d opened=%d", group.id, len(kept), len(to_close), len(opened)
    )
    return group_id


def _regroup(host: TabHost, group: Group, tab_ids: list[int]) -> int | None:
    try:
        return host.group_tabs(tab_ids)
    except HostOperationError:
        logger.debug("group %s: regrouping %d tabs failed", group.id, len(tab_ids))
        return None


def _create_group(
    host: TabHost,
    group: Group,
    items: list[ResultItem],
    *,
    claimed: Collection[int],
) -> int | None:
    wanted = {item.url for item in items}
    try:
        window_id = host.last_focused_window_id()
    except HostOperationError:
        window_id = None
    try:
        open_tabs = host.query_tabs()
    except HostOperationError:
        open_tabs = []

    reusable: dict[str, Tab] = {}
    for tab in open_tabs:
        if tab.group_id is not None and tab.group_id in claimed:
            continue
        url = normalize_url(tab.url)
        if url in wanted and url not in reusable:
            reusable[url] = tab

    tab_ids = [reusable[item.url].id for item in items if item.url in reusable]
    missing = [item for item in items if item.url not in reusable]
    created = _open_tabs(host, group, missing, window_id)
    tab_ids.extend(tab.id for tab in created)
    if not tab_ids:
        return None

    try:
        group_id = host.group_tabs(tab_ids)
    except HostOperationError:
        logger.debug("group %s: creating host group failed", group.id)
        return None
    _apply_label(host, group, group_id)
    logger.debug(
        "group %s: created host group %s reused=%d opened=%d",
        group.id,
        group_id,
        len(reusable),
        len(created),
    )
    return group_id


def _open_tabs(
    host: TabHost,
    group: Group,
    items: list[ResultItem],
    window_id: int | None,
) -> list[Tab]:
    opened: list[Tab] = []
    for item in items:
        try:
            opened.append(host.create_tab(item.url, window_id=window_id, active=False))
        except HostOperationError:
            logger.debug("group %s: opening %s failed", group.id, item.url)
    return opened


def _apply_label(host: TabHost, group: Group, group_id: int) -> None:
    try:
        host.update_group(group_id, title=group.name, color=group.color)
    except HostOperationError:
        logger.debug("group %s: relabel of host group %s failed", group.id, group_id)
