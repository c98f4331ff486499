"""
RDBMS Database Connector Module
Handles connections and sessions for the ledger / dictionary database
"""

from contextlib import contextmanager
from typing import Iterator, Optional
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from config.settings import RDBMSConfig
from database.models import Base
import logging

logger = logging.getLogger(__name__)


class RDBMSConnector:
    """Manages RDBMS database connections and sessions"""

    def __init__(self, config: RDBMSConfig):
        """
        Initialize RDBMS connector

        Args:
            config: RDBMS configuration object
        """
        self.config = config
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    def _engine_options(self) -> dict:
        url = self.config.connection_string
        if url.startswith("sqlite"):
            options = {"connect_args": {"check_same_thread": False}}
            # In-memory databases vanish per connection unless the pool holds one
            if url in ("sqlite://", "sqlite:///:memory:"):
                options["poolclass"] = StaticPool
            return options
        return {
            "pool_size": self.config.pool_size,
            "max_overflow": self.config.max_overflow,
            "pool_pre_ping": True  # Verify connections before using
        }

    @property
    def engine(self) -> Engine:
        """Get or create SQLAlchemy engine"""
        if self._engine is None:
            self._engine = create_engine(
                self.config.connection_string,
                echo=self.config.echo,
                **self._engine_options()
            )
            logger.info("RDBMS engine created")
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        """Get or create session factory"""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                autoflush=False,
                expire_on_commit=False,
                bind=self.engine
            )
        return self._session_factory

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """
        Provide a session that commits on success and rolls back on error

        Yields:
            SQLAlchemy session
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_schema(self):
        """Create all ledger and dictionary tables that do not exist yet"""
        Base.metadata.create_all(self.engine)
        logger.info(f"✓ Schema ready ({len(Base.metadata.tables)} tables)")

    def get_table_names(self) -> list[str]:
        """Get all table names in the database"""
        return inspect(self.engine).get_table_names()

    def test_connection(self) -> bool:
        """Test database connection"""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("RDBMS connection test successful")
            return True
        except Exception as e:
            logger.error(f"RDBMS connection test failed: {e}")
            return False

    def close(self):
        """Close database connections"""
        if self._engine:
            self._engine.dispose()
            logger.info("RDBMS engine disposed")
            self._engine = None
            self._session_factory = None

    def __enter__(self):
        """Context manager entry"""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.close()


_default_connector: Optional[RDBMSConnector] = None


def get_rdbms_connector(config: Optional[RDBMSConfig] = None) -> RDBMSConnector:
    """
    Get or create default RDBMS connector

    Args:
        config: Optional config, uses default if not provided

    Returns:
        RDBMSConnector instance
    """
    global _default_connector

    if _default_connector is None:
        if config is None:
            config = RDBMSConfig.from_env()
        _default_connector = RDBMSConnector(config)

    return _default_connector
