from __future__ import annotations

import contextlib
import datetime as dt
import logging
import socket
import threading
import traceback
from http.server import ThreadingHTTPServer
from pathlib import Path

from .api_http import build_bridge_handler
from .app import PatrolApp
from .config import DEFAULT_LOG_PATH
from .messages import MessageRouter
from .orchestrator import PollPassResult
from .scheduler import PollScheduler, stored_interval

logger = logging.getLogger(__name__)


def build_scheduler(app: PatrolApp, *, log_path: Path | None = None) -> PollScheduler:
    resolved_log = log_path or Path(app.config.log_path or DEFAULT_LOG_PATH).expanduser()

    def interval_min() -> int:
        return stored_interval(app.state, app.config.default_interval_min)

    def on_error(_exc: BaseException) -> None:
        _append_daemon_log(resolved_log, traceback.format_exc())

    return PollScheduler(app.orchestrator, interval_min=interval_min, on_error=on_error)


def run_once(app: PatrolApp) -> PollPassResult | None:
    scheduler = build_scheduler(app)
    scheduler.request()
    scheduler.run_pending()
    return scheduler.last_result


def run_daemon(
    app: PatrolApp,
    host: str,
    port: int,
    *,
    stop_event: threading.Event | None = None,
) -> None:
    """Serve the message bridge and poll on the stored interval until stopped."""
    scheduler = build_scheduler(app)
    router = MessageRouter(app, scheduler=scheduler)
    handler = build_bridge_handler(router)

    class Server(ThreadingHTTPServer):
        address_family = socket.AF_INET6 if ":" in host else socket.AF_INET
        daemon_threads = True

        def server_bind(self) -> None:
            if self.address_family == socket.AF_INET6:
                with contextlib.suppress(OSError):
                    self.socket.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            super().server_bind()

    server = Server((host, port), handler)
    server_thread = threading.Thread(target=server.serve_forever, daemon=True)
    server_thread.start()
    poll_thread = threading.Thread(target=scheduler.run_forever, daemon=True)
    scheduler.request()
    poll_thread.start()
    logger.info("bridge listening on %s:%s", host, port)
    stop = stop_event or threading.Event()
    try:
        while not stop.wait(1.0):
            if not poll_thread.is_alive():
                break
    finally:
        scheduler.stop()
        server.shutdown()
        server.server_close()
        poll_thread.join(timeout=5.0)


def _append_daemon_log(log_path: Path, message: str) -> None:
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        ts = dt.datetime.now(dt.UTC).isoformat()
        with log_path.open("a", encoding="utf-8", errors="ignore") as handle:
            handle.write(f"\n[{ts}]\n{message}\n")
    except OSError:
        return
