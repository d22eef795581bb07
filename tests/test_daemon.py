from __future__ import annotations

import threading
import time
from pathlib import Path

from conftest import FakeSearchClient, pr

from prpatrol import daemon
from prpatrol.app import PatrolApp, build_app
from prpatrol.config import PrPatrolConfig
from prpatrol.host import MemoryTabHost
from prpatrol.models import DEFAULT_GROUP_QUERY


def _app(tmp_path: Path, client: FakeSearchClient) -> PatrolApp:
    host = MemoryTabHost()
    host.open_window()
    app = build_app(
        PrPatrolConfig(db_path=str(tmp_path / "daemon.sqlite"), log_path=str(tmp_path / "d.log")),
        host=host,
        client=client,  # type: ignore[arg-type]
    )
    app.vault.store("ghp_daemon_token_0000")
    return app


def test_run_once_polls_every_group(tmp_path: Path) -> None:
    client = FakeSearchClient({DEFAULT_GROUP_QUERY: [pr(1)]})
    app = _app(tmp_path, client)
    try:
        result = daemon.run_once(app)
    finally:
        app.close()
    assert result is not None
    assert result.ran
    assert client.calls == [DEFAULT_GROUP_QUERY]


def test_failed_pass_is_appended_to_log(tmp_path: Path) -> None:
    app = _app(tmp_path, FakeSearchClient())

    def explode(only_group_ids=None):
        raise RuntimeError("database is locked")

    app.orchestrator.poll_all = explode  # type: ignore[method-assign]
    try:
        assert daemon.run_once(app) is None
    finally:
        app.close()
    log_text = (tmp_path / "d.log").read_text()
    assert "RuntimeError: database is locked" in log_text


def test_run_daemon_polls_then_stops(tmp_path: Path) -> None:
    client = FakeSearchClient({DEFAULT_GROUP_QUERY: [pr(2)]})
    app = _app(tmp_path, client)
    stop = threading.Event()
    worker = threading.Thread(
        target=daemon.run_daemon,
        args=(app, "127.0.0.1", 0),
        kwargs={"stop_event": stop},
        daemon=True,
    )
    worker.start()
    try:
        deadline = time.monotonic() + 5.0
        while not client.calls and time.monotonic() < deadline:
            time.sleep(0.01)
        assert client.calls == [DEFAULT_GROUP_QUERY]
    finally:
        stop.set()
        worker.join(timeout=5.0)
        app.close()
    assert not worker.is_alive()
