from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from flask import Flask
from sqlalchemy import create_engine, pool

from facilitydesk.db import connect_database, missing_tables


def _project_root() -> Path:
    return Path(__file__).resolve().parents[1]


def to_sqlalchemy_url(raw_db_path: str) -> str:
    """Turn ``DB_PATH`` (a sqlite file path or a postgres URL) into a SQLAlchemy URL."""
    raw = (raw_db_path or "").strip()
    if not raw:
        raise RuntimeError("DB_PATH is not set for migrations.")
    if raw.startswith("postgres://"):
        raw = "postgresql://" + raw[len("postgres://") :]
    if raw.startswith(("postgresql://", "postgresql+", "sqlite://", "sqlite+pysqlite://")):
        return raw
    return f"sqlite:///{Path(raw).expanduser().resolve().as_posix()}"


def build_alembic_config(app: Flask) -> AlembicConfig:
    root = _project_root()
    alembic_ini = root / "alembic.ini"
    if not alembic_ini.exists():
        raise RuntimeError("alembic.ini not found at the project root.")

    alembic_cfg = AlembicConfig(str(alembic_ini))
    alembic_cfg.set_main_option("script_location", str((root / "migrations").as_posix()))
    alembic_cfg.set_main_option("sqlalchemy.url", to_sqlalchemy_url(app.config["DB_PATH"]))
    return alembic_cfg


def schema_status(app: Flask) -> Dict[str, Any]:
    """Applied revision, head revision and the facilitydesk tables still missing."""
    cfg = build_alembic_config(app)
    head = ScriptDirectory.from_config(cfg).get_current_head()

    engine = create_engine(cfg.get_main_option("sqlalchemy.url"), poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            revision = MigrationContext.configure(connection).get_current_revision()
    finally:
        engine.dispose()

    db = connect_database(app.config["DB_PATH"])
    try:
        missing = missing_tables(db)
    finally:
        db.close()

    return {
        "revision": revision,
        "head": head,
        "missing_tables": missing,
        "ready": revision == head and not missing,
    }


def register_db_cli(app: Flask) -> None:
    @app.cli.group("db")
    def db_group() -> None:
        """Schema migrations (Alembic)."""

    @db_group.command("upgrade")
    @click.argument("revision", required=False, default="head")
    def db_upgrade(revision: str) -> None:
        command.upgrade(build_alembic_config(app), revision)
        if revision == "head":
            status = schema_status(app)
            if status["missing_tables"]:
                raise click.ClickException(
                    "Upgrade finished but tables are missing: " + ", ".join(status["missing_tables"])
                )
        click.echo(f"Upgraded to {revision}.")

    @db_group.command("downgrade")
    @click.argument("revision", required=False, default="-1")
    def db_downgrade(revision: str) -> None:
        command.downgrade(build_alembic_config(app), revision)
        click.echo(f"Downgraded to {revision}.")

    @db_group.command("current")
    @click.option("--check", is_flag=True, help="Exit non-zero unless the schema is at head and complete.")
    def db_current(check: bool) -> None:
        status = schema_status(app)
        marker = " (head)" if status["revision"] == status["head"] else f" (head is {status['head']})"
        click.echo(f"revision: {status['revision'] or 'none'}{marker}")
        if status["missing_tables"]:
            click.echo("missing tables: " + ", ".join(status["missing_tables"]))
        else:
            click.echo("schema: ready")
        if check and not status["ready"]:
            raise click.ClickException("Schema is not up to date; run `flask db upgrade`.")
