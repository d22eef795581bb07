from __future__ import annotations

import logging
import time
from collections.abc import Callable, Collection
from dataclasses import dataclass, field
from typing import Protocol

from .errors import HostOperationError, QueryError, RateLimited
from .groups import GroupStore, total_result_count
from .host import TabHost
from .models import ResultItem
from .reconcile import reconcile
from .vault import CredentialVault

logger = logging.getLogger(__name__)

LAST_POLL_KEY = "last_poll"
RATE_LIMIT_SKIP_MESSAGE = "Skipped: rate limited"


class SearchClient(Protocol):
    def search(self, token: str, query: str) -> list[ResultItem]: ...


@dataclass
class BackoffState:
    # Epoch seconds; passes are skipped until then. Not persisted.
    until: float = 0.0

    def active(self, now: float) -> bool:
        return now < self.until


@dataclass
class PollPassResult:
    status: str
    polled: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    badge_text: str = ""

    @property
    def ran(self) -> bool:
        return self.status == "ok"


def badge_text(total: int) -> str:
    return str(total) if total > 0 else ""


class PollOrchestrator:
    def __init__(
        self,
        groups: GroupStore,
        vault: CredentialVault,
        client: SearchClient,
        host: TabHost,
        *,
        backoff: BackoffState | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.groups = groups
        self.vault = vault
        self.client = client
        self.host = host
        self.backoff = backoff or BackoffState()
        self._clock = clock

    def poll_all(self, only_group_ids: Collection[str] | None = None) -> PollPassResult:
        """Run one pass over the stored groups, or over ``only_group_ids`` of them.

        Holds the group store lock for the whole pass, so passes never overlap
        each other or an editor save.
        """
        with self.groups.lock:
            return self._run_pass(only_group_ids)

    def _run_pass(self, only_group_ids: Collection[str] | None) -> PollPassResult:
        now = self._clock()
        if self.backoff.active(now):
            logger.info("poll skipped; backing off for %.0fs", self.backoff.until - now)
            return PollPassResult(status="backoff")

        token = self.vault.load()
        if not token:
            self._set_badge("")
            return PollPassResult(status="no_credential")

        groups = self.groups.list_groups()
        if not groups:
            self._set_badge("")
            self.groups.state.set(LAST_POLL_KEY, self._now_ms())
            return PollPassResult(status="no_groups")

        result = PollPassResult(status="ok")
        rate_limited = False
        for group in groups:
            if only_group_ids is not None and group.id not in only_group_ids:
                continue
            if rate_limited:
                group.last_error = RATE_LIMIT_SKIP_MESSAGE
                result.skipped.append(group.id)
                continue
            result.polled.append(group.id)
            try:
                items = self.client.search(token, group.query)
            except RateLimited as exc:
                self.backoff.until = exc.resume_at
                rate_limited = True
                group.last_error = str(exc)
                result.errors[group.id] = str(exc)
                continue
            except QueryError as exc:
                logger.info("group %s: search failed: %s", group.id, exc)
                group.last_error = str(exc)
                result.errors[group.id] = str(exc)
                continue

            group.result_count = len(items)
            group.last_error = None
            claimed = {
                other.host_group_id
                for other in groups
                if other is not group and other.host_group_id is not None
            }
            try:
                group.host_group_id = reconcile(self.host, group, items, claimed=claimed)
            except Exception as exc:
                logger.exception("group %s: reconcile failed", group.id)
                group.last_error = str(exc) or type(exc).__name__
                result.errors[group.id] = group.last_error

        result.badge_text = badge_text(total_result_count(groups))
        self.groups.replace(groups, also={LAST_POLL_KEY: self._now_ms()})
        self._set_badge(result.badge_text)
        return result

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _set_badge(self, text: str) -> None:
        try:
            self.host.set_badge_text(text)
        except HostOperationError:
            logger.debug("badge update failed")
