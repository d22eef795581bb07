from __future__ import annotations

import pytest
from conftest import pr

from prpatrol.errors import HostOperationError
from prpatrol.host import MemoryTabHost
from prpatrol.models import Group
from prpatrol.reconcile import reconcile, resolve_host_group


def _group(**kwargs) -> Group:
    values = {"id": "g1", "name": "Reviews", "color": "blue", "query": "is:pr"}
    values.update(kwargs)
    return Group(**values)


def test_reviews_scenario_touches_only_the_difference(host: MemoryTabHost) -> None:
    group = _group()

    group.host_group_id = reconcile(host, group, [pr(1), pr(2)])

    assert group.host_group_id is not None
    assert host.tab_urls(group.host_group_id) == [pr(1).url, pr(2).url]
    assert host.count("create") == 2
    label = host.groups[group.host_group_id]
    assert (label.title, label.color) == ("Reviews", "blue")
    pr2_tab = next(tab.id for tab in host.tabs.values() if tab.url == pr(2).url)

    host.operations.clear()
    group.host_group_id = reconcile(host, group, [pr(2), pr(3)])

    assert host.tab_urls(group.host_group_id) == [pr(2).url, pr(3).url]
    assert host.operations.count(("remove", pr(1).url)) == 1
    assert host.operations.count(("create", pr(3).url)) == 1
    assert host.count("create") + host.count("remove") == 2
    assert pr2_tab in host.tabs


@pytest.mark.parametrize(
    ("current", "desired"),
    [
        ([1, 2, 3], [3, 4]),
        ([1], [1]),
        ([1, 2], [5, 6, 7]),
        ([4, 5, 6, 7], [4]),
    ],
)
def test_reconcile_converges_with_minimal_churn(
    host: MemoryTabHost, current: list[int], desired: list[int]
) -> None:
    group = _group()
    group.host_group_id = reconcile(host, group, [pr(n) for n in current])
    host.operations.clear()

    group.host_group_id = reconcile(host, group, [pr(n) for n in desired])

    assert group.host_group_id is not None
    assert host.tab_urls(group.host_group_id) == sorted(pr(n).url for n in desired)
    churn = len(set(current) - set(desired)) + len(set(desired) - set(current))
    assert host.count("create") + host.count("remove") == churn


def test_empty_results_tear_the_group_down(host: MemoryTabHost) -> None:
    group = _group()
    group.host_group_id = reconcile(host, group, [pr(1), pr(2)])

    assert reconcile(host, group, []) is None

    assert host.tabs == {}
    assert host.groups == {}


def test_trailing_slash_tab_counts_as_open(host: MemoryTabHost) -> None:
    group = _group()
    tab = host.open_tab(pr(1).url + "/")

    group.host_group_id = reconcile(host, group, [pr(1)])

    assert host.count("create") == 0
    assert host.tabs[tab.id].group_id == group.host_group_id


def test_duplicate_tabs_in_group_are_closed(host: MemoryTabHost) -> None:
    group = _group()
    group.host_group_id = reconcile(host, group, [pr(1)])
    extra = host.open_tab(pr(1).url)
    host.group_tabs([extra.id], group_id=group.host_group_id)
    host.operations.clear()

    reconcile(host, group, [pr(1)])

    assert host.tab_urls(group.host_group_id) == [pr(1).url]
    assert host.count("remove") == 1


def test_lost_handle_is_recovered_by_name_and_color(host: MemoryTabHost) -> None:
    group = _group()
    gid = reconcile(host, group, [pr(1)])
    group.host_group_id = 12345

    assert resolve_host_group(host, group) == (gid, host.groups[gid].window_id)
    assert reconcile(host, group, [pr(1)]) == gid


def test_other_patrol_groups_are_never_adopted(host: MemoryTabHost) -> None:
    first = _group(id="a")
    first.host_group_id = reconcile(host, first, [pr(1)])
    twin = _group(id="b")

    twin_gid = reconcile(host, twin, [pr(1)], claimed={first.host_group_id})

    assert twin_gid is not None
    assert twin_gid != first.host_group_id
    assert host.tab_urls(first.host_group_id) == [pr(1).url]
    assert host.tab_urls(twin_gid) == [pr(1).url]


def test_window_closed_mid_pass_recreates_group(host: MemoryTabHost) -> None:
    group = _group()
    gid = reconcile(host, group, [pr(1)])
    host.close_window(host.groups[gid].window_id)
    host.open_window()
    group.host_group_id = gid

    new_gid = reconcile(host, group, [pr(1), pr(2)])

    assert new_gid is not None
    assert new_gid != gid
    assert host.tab_urls(new_gid) == [pr(1).url, pr(2).url]


def test_host_failures_are_swallowed(host: MemoryTabHost) -> None:
    group = _group()
    group.host_group_id = reconcile(host, group, [pr(1), pr(2)])
    host.failing = {"remove_tabs", "update_group"}

    assert reconcile(host, group, [pr(2), pr(3)]) == group.host_group_id

    assert pr(3).url in host.tab_urls(group.host_group_id)


def test_group_creation_failure_returns_none(host: MemoryTabHost) -> None:
    host.failing = {"group_tabs"}
    assert reconcile(host, _group(), [pr(1)]) is None


def test_disjoint_results_keep_the_group(host: MemoryTabHost) -> None:
    group = _group()
    gid = reconcile(host, group, [pr(1), pr(2)])
    group.host_group_id = gid

    assert reconcile(host, group, [pr(5), pr(6), pr(7)]) == gid

    assert host.tab_urls(gid) == [pr(5).url, pr(6).url, pr(7).url]
    assert all(tab.group_id == gid for tab in host.tabs.values())


def test_failed_attach_regroups_the_opened_tabs(
    host: MemoryTabHost, monkeypatch: pytest.MonkeyPatch
) -> None:
    group = _group()
    group.host_group_id = reconcile(host, group, [pr(1)])
    real_group_tabs = host.group_tabs

    def refuse_existing(tab_ids, *, group_id=None):
        if group_id is not None:
            raise HostOperationError(f"No group with id: {group_id}")
        return real_group_tabs(tab_ids)

    monkeypatch.setattr(host, "group_tabs", refuse_existing)
    host.operations.clear()

    new_gid = reconcile(host, group, [pr(2)])

    assert new_gid is not None
    assert new_gid != group.host_group_id
    assert host.tab_urls(new_gid) == [pr(2).url]
    assert host.count("create") == 1
    assert (host.groups[new_gid].title, host.groups[new_gid].color) == ("Reviews", "blue")


def test_claimed_cached_id_is_not_reused(host: MemoryTabHost) -> None:
    first = _group(id="a", name="Mine")
    first.host_group_id = reconcile(host, first, [pr(1)])
    stale = _group(id="b", host_group_id=first.host_group_id)

    assert resolve_host_group(host, stale, claimed={first.host_group_id}) == (None, None)

    stale_gid = reconcile(host, stale, [pr(9)], claimed={first.host_group_id})

    assert stale_gid != first.host_group_id
    assert host.tab_urls(first.host_group_id) == [pr(1).url]
    assert host.tab_urls(stale_gid) == [pr(9).url]
