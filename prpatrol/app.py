from __future__ import annotations

from dataclasses import dataclass

from .config import PrPatrolConfig, load_config
from .github_client import GitHubClient
from .groups import GroupStore
from .host import TabHost, load_tab_host
from .migrations import run_startup_migrations
from .orchestrator import BackoffState, PollOrchestrator
from .state import StateStore
from .vault import CredentialVault


@dataclass
class PatrolApp:
    config: PrPatrolConfig
    state: StateStore
    vault: CredentialVault
    client: GitHubClient
    host: TabHost
    groups: GroupStore
    orchestrator: PollOrchestrator

    def close(self) -> None:
        self.state.close()


def build_app(
    config: PrPatrolConfig | None = None,
    *,
    host: TabHost | None = None,
    client: GitHubClient | None = None,
    backoff: BackoffState | None = None,
    migrate: bool = True,
) -> PatrolApp:
    cfg = config or load_config()
    state = StateStore(cfg.db_path)
    vault = CredentialVault(state)
    resolved_host = host or load_tab_host(cfg.tab_host)
    resolved_client = client or GitHubClient(
        api_url=cfg.api_url,
        web_url=cfg.web_url,
        page_size=cfg.page_size,
        timeout_s=cfg.http_timeout_s,
    )
    groups = GroupStore(state, resolved_host)
    if migrate:
        run_startup_migrations(state, vault, groups)
    orchestrator = PollOrchestrator(
        groups, vault, resolved_client, resolved_host, backoff=backoff
    )
    return PatrolApp(
        config=cfg,
        state=state,
        vault=vault,
        client=resolved_client,
        host=resolved_host,
        groups=groups,
        orchestrator=orchestrator,
    )
