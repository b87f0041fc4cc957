"""Alembic schema checks for startup (DB_AUTO_MIGRATE) and tests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]


class MigrationError(RuntimeError):
    """Raised when the auto-upgrade leaves the schema short of head."""


@dataclass(frozen=True)
class SchemaState:
    current: tuple[str, ...]
    head: tuple[str, ...]

    @property
    def is_current(self) -> bool:
        return set(self.current) == set(self.head)


def alembic_config() -> Config:
    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    return config


def schema_state(engine: Engine) -> SchemaState:
    """Revisions stamped in the database versus the heads shipped in alembic/versions."""
    head = tuple(ScriptDirectory.from_config(alembic_config()).get_heads())
    with engine.connect() as connection:
        # () when alembic_version does not exist yet
        current = tuple(MigrationContext.configure(connection).get_current_heads())
    return SchemaState(current=current, head=head)


def ensure_migrations(engine: Engine, auto_migrate: bool) -> SchemaState:
    """
    Report the schema state, upgrading to head first when `auto_migrate` is set.

    The upgrade runs on a connection from `engine` (see alembic/env.py), so it
    always targets the database the app is serving.
    """
    state = schema_state(engine)
    if state.is_current or not auto_migrate:
        return state

    logger.info("Upgrading schema %s -> %s", ",".join(state.current) or "base", ",".join(state.head))
    config = alembic_config()
    with engine.begin() as connection:
        config.attributes["connection"] = connection
        command.upgrade(config, "head")

    state = schema_state(engine)
    if not state.is_current:
        raise MigrationError("Database migrations did not reach head after auto-upgrade.")
    return state
