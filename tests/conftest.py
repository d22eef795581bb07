from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from prpatrol.groups import GroupStore
from prpatrol.host import MemoryTabHost
from prpatrol.models import ResultItem
from prpatrol.state import StateStore
from prpatrol.vault import CredentialVault


@pytest.fixture(autouse=True)
def _isolate_prpatrol_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PRPATROL_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setenv("PRPATROL_DB", str(tmp_path / "state.sqlite"))
    monkeypatch.setenv("PRPATROL_LOG", str(tmp_path / "daemon.log"))


@pytest.fixture
def state(tmp_path: Path) -> Iterator[StateStore]:
    store = StateStore(tmp_path / "state.sqlite")
    try:
        yield store
    finally:
        store.close()


@pytest.fixture
def host() -> MemoryTabHost:
    tab_host = MemoryTabHost()
    tab_host.open_window()
    return tab_host


@pytest.fixture
def vault(state: StateStore) -> CredentialVault:
    return CredentialVault(state)


@pytest.fixture
def groups(state: StateStore, host: MemoryTabHost) -> GroupStore:
    return GroupStore(state, host)


def pr(number: int, repo: str = "acme/widgets") -> ResultItem:
    return ResultItem(
        url=f"https://github.com/{repo}/pull/{number}",
        title=f"PR {number}",
        number=number,
    )


class FakeSearchClient:
    """Scripted search results keyed by query; exceptions are raised."""

    def __init__(
        self, results: dict[str, object] | None = None, login: str | BaseException = "octocat"
    ) -> None:
        self.results: dict[str, object] = dict(results or {})
        self.login = login
        self.calls: list[str] = []
        self.login_calls: list[str] = []

    def search(self, token: str, query: str) -> list[ResultItem]:
        self.calls.append(query)
        outcome = self.results.get(query, [])
        if isinstance(outcome, BaseException):
            raise outcome
        return list(outcome)  # type: ignore[call-overload]

    def fetch_login(self, token: str) -> str:
        self.login_calls.append(token)
        if isinstance(self.login, BaseException):
            raise self.login
        return str(self.login)


@pytest.fixture
def search_client() -> FakeSearchClient:
    return FakeSearchClient()

