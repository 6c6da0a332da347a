"""Database engine and session factory shared by the API and the worker."""

from typing import Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from recruitflow_core.config import get_settings

_sync_engine: Optional[Engine] = None
_sync_session_factory: Optional[sessionmaker[Session]] = None


def get_sync_engine(url: Optional[str] = None) -> Engine:
    """Create the engine for ``url`` (defaults to ``MYSQL_URL``).

    MySQL runs at READ COMMITTED: claims are conditional UPDATEs, and the
    loser of a claim race must see the winner's committed row when it
    re-reads, not its own repeatable-read snapshot.
    """
    url = url or get_settings().mysql_url
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=3600,
        isolation_level="READ COMMITTED",
    )


def get_sync_session_factory() -> sessionmaker[Session]:
    """Get the process-wide session factory (created on first use)."""
    global _sync_engine, _sync_session_factory
    if _sync_session_factory is None:
        _sync_engine = get_sync_engine()
        _sync_session_factory = sessionmaker(
            bind=_sync_engine,
            autocommit=False,
            autoflush=False,
        )
    return _sync_session_factory


def dispose_engine(close: bool = False) -> None:
    """Drop pooled connections and the factory.

    Forked worker processes call this with ``close=False`` so the child
    never touches connections still owned by the parent. The API closes
    them for real on shutdown.
    """
    global _sync_engine, _sync_session_factory
    if _sync_engine is not None:
        _sync_engine.dispose(close=close)
    _sync_engine = None
    _sync_session_factory = None
