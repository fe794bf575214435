"""
Engine и транзакции БД (PostgreSQL в проде, SQLite в тестах).

Одна транзакция на with db_session(): commit при выходе, rollback при
исключении. Сбой драйвера превращается в StoreUnavailableError (503,
клиент повторяет запрос), IntegrityError отдаётся вызывающему как есть.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from meeting_lifecycle.common.config import get_settings
from meeting_lifecycle.common.errors import StoreUnavailableError

_settings = get_settings()


def _engine_kwargs(dsn: str) -> dict:
    if dsn.startswith("sqlite"):
        # воркеры/тесты ходят в SQLite из нескольких потоков
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {"pool_pre_ping": True}


engine = create_engine(_settings.postgres_dsn, **_engine_kwargs(_settings.postgres_dsn))

SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)


def init_db() -> None:
    """Схема из моделей без Alembic: DB_CREATE_ALL=true и тесты."""
    from .models import Base

    Base.metadata.create_all(bind=engine)


@contextmanager
def db_session() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except IntegrityError:
        session.rollback()
        raise
    except DBAPIError as e:
        session.rollback()
        raise StoreUnavailableError(
            details={"err": str(e.orig if e.orig is not None else e)[:300]}
        ) from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
