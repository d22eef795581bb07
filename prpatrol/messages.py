"""Request/response messages exchanged with the settings and popup surfaces.

Every handler returns a JSON-ready dict. Failures the user can act on come back
as ``{"ok": False, "error": ...}``; they are never raised to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

from .app import PatrolApp
from .errors import GroupNotFound, QueryError, ValidationError
from .orchestrator import LAST_POLL_KEY
from .scheduler import INTERVAL_KEY, PollScheduler, coerce_interval
from .vault import mask_secret

logger = logging.getLogger(__name__)

Response = dict[str, Any]


class MessageRouter:
    """Dispatch messages by ``type``.

    With a ``scheduler`` attached (the daemon), polls are queued on the
    scheduler thread and coalesced with other triggers. Without one (the CLI),
    they run inline.
    """

    def __init__(
        self,
        app: PatrolApp,
        *,
        scheduler: PollScheduler | None = None,
        poll_timeout_s: float | None = 300.0,
    ) -> None:
        self.app = app
        self.scheduler = scheduler
        self.poll_timeout_s = poll_timeout_s
        self._handlers: dict[str, Callable[[dict[str, Any]], Response]] = {
            "poll-now": self._poll_now,
            "save-settings": self._save_settings,
            "get-status": self._get_status,
            "get-groups": self._get_groups,
            "save-groups": self._save_groups,
            "delete-group": self._delete_group,
            "window-created": self._window_created,
            "clear-token": self._clear_token,
        }

    def handle(self, message: Any) -> Response:
        if not isinstance(message, dict):
            return {"ok": False, "error": "message must be an object"}
        handler = self._handlers.get(str(message.get("type") or ""))
        if handler is None:
            return {"ok": False, "error": "unknown message type"}
        return handler(message)

    def _poll(self, group_ids: Iterable[str] | None, *, wait: bool) -> None:
        if self.scheduler is None:
            self.app.orchestrator.poll_all(set(group_ids) if group_ids is not None else None)
            return
        if wait:
            self.scheduler.request_and_wait(group_ids, timeout=self.poll_timeout_s)
        else:
            self.scheduler.request(group_ids)

    def _poll_now(self, message: dict[str, Any]) -> Response:
        group_ids = message.get("groupIds")
        if isinstance(group_ids, list) and group_ids:
            self._poll([str(group_id) for group_id in group_ids], wait=True)
        else:
            self._poll(None, wait=True)
        return {"ok": True}

    def _window_created(self, message: dict[str, Any]) -> Response:
        # The host drops tab groups with their window; re-poll to recreate them.
        self._poll(None, wait=False)
        return {"ok": True}

    def _clear_token(self, message: dict[str, Any]) -> Response:
        self.app.vault.clear()
        return {"ok": True}

    def _save_settings(self, message: dict[str, Any]) -> Response:
        settings = message.get("settings")
        if not isinstance(settings, dict):
            settings = {}
        interval = coerce_interval(settings.get("interval"))
        pat = settings.get("pat")
        token = pat.strip() if isinstance(pat, str) else ""
        response: Response = {"ok": True}
        if token:
            try:
                username = self.app.client.fetch_login(token)
            except QueryError as exc:
                return {"ok": False, "error": str(exc)}
            self.app.vault.store(token)
            logger.info("stored credential for %s", username)
            response["username"] = username
        self.app.state.set(INTERVAL_KEY, interval)
        if self.scheduler is not None:
            self.scheduler.reschedule()
        return response

    def _get_status(self, message: dict[str, Any]) -> Response:
        token = self.app.vault.load()
        data = self.app.state.get_many([INTERVAL_KEY, LAST_POLL_KEY])
        return {
            "hasPat": bool(token),
            "patMasked": mask_secret(token) if token else None,
            "interval": data.get(INTERVAL_KEY),
            "lastPoll": data.get(LAST_POLL_KEY),
            "groups": [
                {
                    "id": group.id,
                    "name": group.name,
                    "color": group.color,
                    "prCount": group.result_count,
                    "lastError": group.last_error,
                }
                for group in self.app.groups.list_groups()
            ],
        }

    def _get_groups(self, message: dict[str, Any]) -> Response:
        return {"groups": [group.to_config() for group in self.app.groups.list_groups()]}

    def _save_groups(self, message: dict[str, Any]) -> Response:
        try:
            result = self.app.groups.save(message.get("groups"))
        except ValidationError as exc:
            return {"ok": False, "error": str(exc)}
        if result.dirty_ids:
            self._poll(result.dirty_ids, wait=False)
        return {"ok": True}

    def _delete_group(self, message: dict[str, Any]) -> Response:
        group_id = message.get("groupId")
        try:
            self.app.groups.delete(str(group_id) if group_id else "")
        except (ValidationError, GroupNotFound) as exc:
            return {"ok": False, "error": str(exc)}
        return {"ok": True}
