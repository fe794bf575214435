"""
Alembic: миграции схемы комнат, сессий, участников и транскрипта.

DSN и engine общие с приложением (storage.db), alembic.ini хранит только
script_location. Логи миграций идут через setup_logging проекта.
"""

from __future__ import annotations

from alembic import context

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.logging import setup_logging
from meeting_lifecycle.storage.models import Base

setup_logging(service="migrations")

_OPTIONS = {
    "target_metadata": Base.metadata,
    "compare_type": True,
}


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def migrate_offline(url: str) -> None:
    """alembic upgrade --sql: печать DDL без подключения к БД."""
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=_is_sqlite(url),
        **_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


def migrate_online() -> None:
    from meeting_lifecycle.storage.db import engine

    with engine.connect() as connection:
        # ALTER TABLE в SQLite возможен только через batch-пересоздание таблицы
        context.configure(
            connection=connection,
            render_as_batch=connection.dialect.name == "sqlite",
            **_OPTIONS,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    migrate_offline(get_settings().postgres_dsn)
else:
    migrate_online()
