from __future__ import annotations

import json
import logging
import os
from http.server import BaseHTTPRequestHandler
from typing import Any, Literal
from urllib.parse import urlparse

from .messages import MessageRouter

logger = logging.getLogger(__name__)

_ALLOWED_ORIGIN_HOSTS = {"127.0.0.1", "localhost", "::1"}
_EXTENSION_SCHEMES = {"chrome-extension", "moz-extension"}


def _is_allowed_origin_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme in _EXTENSION_SCHEMES:
        return bool(parsed.netloc) and parsed.path in ("", "/")
    if parsed.scheme != "http":
        return False
    if parsed.username is not None or parsed.password is not None:
        return False
    try:
        hostname = parsed.hostname
        _ = parsed.port
    except ValueError:
        return False
    if hostname not in _ALLOWED_ORIGIN_HOSTS:
        return False
    return (
        parsed.path in ("", "/") and not parsed.params and not parsed.query and not parsed.fragment
    )


def _is_unsafe_missing_origin(handler: BaseHTTPRequestHandler) -> bool:
    sec_fetch_site = (handler.headers.get("Sec-Fetch-Site") or "").strip().lower()
    if sec_fetch_site and sec_fetch_site not in {"same-origin", "same-site", "none"}:
        return True
    referer = handler.headers.get("Referer")
    if not referer:
        return False
    return not _is_allowed_origin_url(referer)


def send_json_response(
    handler: BaseHTTPRequestHandler,
    payload: dict,
    status: int = 200,
) -> None:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def read_json_body(handler: BaseHTTPRequestHandler) -> dict[str, Any] | None:
    length = int(handler.headers.get("Content-Length", "0") or 0)
    raw = handler.rfile.read(length).decode("utf-8") if length else ""
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


MissingOriginPolicy = Literal["allow", "reject", "reject_if_unsafe"]


def reject_cross_origin(
    handler: BaseHTTPRequestHandler,
    *,
    missing_origin_policy: MissingOriginPolicy = "allow",
) -> bool:
    """Send a 403 and return True unless the request may proceed."""
    origin = handler.headers.get("Origin")
    if not origin:
        if missing_origin_policy == "allow":
            return False
        if missing_origin_policy == "reject_if_unsafe" and not _is_unsafe_missing_origin(handler):
            return False
        send_json_response(handler, {"error": "forbidden"}, status=403)
        return True
    if _is_allowed_origin_url(origin):
        return False
    send_json_response(handler, {"error": "forbidden"}, status=403)
    return True


def build_bridge_handler(router: MessageRouter):
    """Expose ``router`` over HTTP for the extension pages and local tools."""

    class BridgeHandler(BaseHTTPRequestHandler):
        def log_message(self, format: str, *args: object) -> None:  # noqa: A003
            if os.environ.get("PRPATROL_BRIDGE_LOGS") == "1":
                super().log_message(format, *args)

        def _dispatch(self, message: dict[str, Any]) -> None:
            try:
                response = router.handle(message)
            except Exception:
                logger.exception("message %r failed", message.get("type"))
                send_json_response(self, {"error": "internal server error"}, status=500)
                return
            send_json_response(self, response)

        def do_GET(self) -> None:  # noqa: N802
            parsed = urlparse(self.path)
            if reject_cross_origin(self, missing_origin_policy="reject_if_unsafe"):
                return
            if parsed.path == "/api/status":
                self._dispatch({"type": "get-status"})
                return
            if parsed.path == "/api/groups":
                self._dispatch({"type": "get-groups"})
                return
            self.send_response(404)
            self.end_headers()

        def do_POST(self) -> None:  # noqa: N802
            parsed = urlparse(self.path)
            if parsed.path != "/api/message":
                self.send_response(404)
                self.end_headers()
                return
            if reject_cross_origin(self, missing_origin_policy="reject_if_unsafe"):
                return
            payload = read_json_body(self)
            if payload is None:
                send_json_response(self, {"ok": False, "error": "invalid json"}, status=400)
                return
            self._dispatch(payload)

    return BridgeHandler
