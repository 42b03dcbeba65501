"""
Database Session Management

One DatabaseManager per process owns the engine and session factory.
Repositories receive a Session from session_scope(), which commits on
success and rolls back on any exception, so a trade insert and its ledger
version bump land together or not at all.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from contextlib import contextmanager
from typing import Generator, Optional
import logging

from trade_ledger.config.settings import Settings, get_settings
from trade_ledger.core.database.schema import Base

logger = logging.getLogger(__name__)


# ============================================================================
# Engine & Session Factory
# ============================================================================

class DatabaseManager:
    """
    Engine + session factory for the ledger database.

    Args:
        database_url: Overrides settings.database_url
        settings: Settings instance (global settings when omitted)
    """

    def __init__(self, database_url: Optional[str] = None, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.database_url = database_url or settings.database_url
        self.engine = self._create_engine(settings)
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        logger.info(f"Ledger database ready: {self.database_url}")

    def _create_engine(self, settings: Settings):
        kwargs = settings.get_database_engine_kwargs()

        if not self.database_url.startswith('sqlite'):
            return create_engine(self.database_url, **kwargs)

        kwargs.pop('pool_size', None)
        kwargs.pop('max_overflow', None)
        kwargs['connect_args'] = {'check_same_thread': False}
        if ':memory:' in self.database_url:
            # Single shared connection, otherwise each session gets an empty DB
            kwargs['poolclass'] = StaticPool

        engine = create_engine(self.database_url, **kwargs)

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    def create_all_tables(self):
        """Create trades / risk_targets / ledger_versions if missing"""
        Base.metadata.create_all(bind=self.engine)
        logger.info(f"✓ Ledger tables ready ({', '.join(sorted(Base.metadata.tables))})")

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Transactional scope

        Usage:
            with db.session_scope() as session:
                TradeRepository(session).create_from_domain(trade)
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Ledger transaction rolled back: {e}")
            raise
        finally:
            session.close()


# ============================================================================
# Global Database Instance
# ============================================================================

_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """Process-wide DatabaseManager built from settings (singleton)"""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Session on the global database

    Usage:
        from trade_ledger.core.database.session import session_scope

        with session_scope() as session:
            trades = TradeRepository(session).list(portfolio_id)
    """
    with get_db_manager().session_scope() as session:
        yield session


def init_database() -> DatabaseManager:
    """Create the ledger tables on the global database"""
    db = get_db_manager()
    db.create_all_tables()
    return db


# ============================================================================
# Testing Support
# ============================================================================

def create_test_database() -> DatabaseManager:
    """Fresh in-memory SQLite ledger with all tables created"""
    db = DatabaseManager(database_url="sqlite:///:memory:")
    db.create_all_tables()
    return db
