"""Startup migrations of the persisted state.

Each step has a version; pending steps run in order and the highest applied
version is recorded under ``schema_version``. Steps also check for the data
they convert, so running them again changes nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from .groups import GroupStore
from .state import StateStore
from .vault import CredentialVault

logger = logging.getLogger(__name__)

SCHEMA_VERSION_KEY = "schema_version"


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    apply: Callable[[CredentialVault, GroupStore], bool]
    # Re-checked on every startup, whatever the recorded version.
    always: bool = False


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        1,
        "encrypt-plaintext-token",
        lambda vault, _groups: vault.migrate_plaintext(),
        always=True,
    ),
    Migration(2, "flat-keys-to-groups", lambda _vault, groups: groups.migrate_legacy()),
)

CURRENT_SCHEMA_VERSION = max(migration.version for migration in MIGRATIONS)


def schema_version(state: StateStore) -> int:
    value = state.get(SCHEMA_VERSION_KEY)
    return value if isinstance(value, int) else 0


def run_startup_migrations(
    state: StateStore,
    vault: CredentialVault,
    groups: GroupStore,
) -> list[str]:
    """Apply pending migrations; return the names of steps that changed data."""
    current = schema_version(state)
    changed: list[str] = []
    for migration in MIGRATIONS:
        if migration.version <= current and not migration.always:
            continue
        if migration.apply(vault, groups):
            logger.info("applied migration %s", migration.name)
            changed.append(migration.name)
    if current < CURRENT_SCHEMA_VERSION:
        state.set(SCHEMA_VERSION_KEY, CURRENT_SCHEMA_VERSION)
    return changed
