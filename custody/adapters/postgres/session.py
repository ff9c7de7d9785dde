"""Postgres Session Management."""
import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def build_session_factory(database_url: str, **engine_kwargs) -> sessionmaker:
    engine = create_engine(database_url, pool_pre_ping=True, **engine_kwargs)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_session_factory(database_url: str) -> sessionmaker:
    """Process-wide session factory for the configured database."""
    global _engine, _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(database_url)
        _engine = _session_factory.kw["bind"]
        logger.info("Initialized Database Engine")
    return _session_factory


def check_database() -> bool:
    if _engine is None:
        return False
    try:
        with _engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
