"""
Centralized configuration management for the terminology sync system.
All configuration settings are managed here.
"""

import os
from typing import Optional
from dotenv import load_dotenv
from dataclasses import dataclass

load_dotenv()


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class RDBMSConfig:
    """Ledger / dictionary database configuration"""
    connection_string: str
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10

    @classmethod
    def from_env(cls) -> 'RDBMSConfig':
        """Load RDBMS config from environment variables"""
        return cls(
            connection_string=os.getenv(
                "DATABASE_URL",
                "sqlite:///terminology_sync.db"
            ),
            echo=_env_bool("DB_ECHO"),
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10"))
        )


@dataclass
class Neo4jConfig:
    """Neo4j database configuration (graph dictionary backend)"""
    uri: Optional[str]
    username: str
    password: Optional[str]
    database: str = "neo4j"

    @classmethod
    def from_env(cls) -> 'Neo4jConfig':
        """Load Neo4j config from environment variables"""
        return cls(
            uri=os.getenv("NEO4J_URI"),
            username=os.getenv("NEO4J_USERNAME", "neo4j"),
            password=os.getenv("NEO4J_PASSWORD"),
            database=os.getenv("NEO4J_DATABASE", "neo4j")
        )


@dataclass
class OCLConfig:
    """Remote concept repository (subscription seed and HTTP client) configuration"""
    url: Optional[str] = None
    token: Optional[str] = None
    connect_timeout: float = 10.0
    read_timeout: float = 300.0
    max_retries: int = 3
    page_limit: int = 100000
    spool_max_memory: int = 8 * 1024 * 1024

    @property
    def timeout(self) -> tuple:
        """(connect, read) timeout tuple as accepted by requests"""
        return (self.connect_timeout, self.read_timeout)

    @classmethod
    def from_env(cls) -> 'OCLConfig':
        """Load OCL config from environment variables"""
        return cls(
            url=os.getenv("OCL_URL") or None,
            token=os.getenv("OCL_TOKEN") or None,
            connect_timeout=float(os.getenv("OCL_CONNECT_TIMEOUT", "10")),
            read_timeout=float(os.getenv("OCL_READ_TIMEOUT", "300")),
            max_retries=int(os.getenv("OCL_MAX_RETRIES", "3")),
            page_limit=int(os.getenv("OCL_PAGE_LIMIT", "100000")),
            spool_max_memory=int(os.getenv("OCL_SPOOL_MAX_MEMORY", str(8 * 1024 * 1024)))
        )


@dataclass
class SystemConfig:
    """Overall system configuration"""
    dictionary_backend: str = "sql"
    stale_run_minutes: int = 360
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> 'SystemConfig':
        """Load system config from environment variables"""
        return cls(
            dictionary_backend=os.getenv("DICTIONARY_BACKEND", "sql").lower(),
            stale_run_minutes=int(os.getenv("SYNC_STALE_RUN_MINUTES", "360")),
            log_level=os.getenv("LOG_LEVEL", "INFO")
        )


class Config:
    """Main configuration class that aggregates all configs"""

    def __init__(self):
        self.rdbms = RDBMSConfig.from_env()
        self.neo4j = Neo4jConfig.from_env()
        self.ocl = OCLConfig.from_env()
        self.system = SystemConfig.from_env()

    @classmethod
    def load(cls) -> 'Config':
        """Load configuration from environment"""
        return cls()

    def validate(self) -> bool:
        """Validate that all required configurations are present"""
        errors = []

        if not self.rdbms.connection_string:
            errors.append("DATABASE_URL is required")
        if self.system.dictionary_backend not in ("sql", "neo4j"):
            errors.append(
                f"DICTIONARY_BACKEND must be 'sql' or 'neo4j', got '{self.system.dictionary_backend}'"
            )
        if self.system.dictionary_backend == "neo4j":
            if not self.neo4j.uri:
                errors.append("NEO4J_URI is required for the neo4j dictionary backend")
            if not self.neo4j.password:
                errors.append("NEO4J_PASSWORD is required for the neo4j dictionary backend")
        if self.ocl.url and not self.ocl.url.startswith(("http://", "https://")):
            errors.append(f"OCL_URL must be an http(s) URL, got '{self.ocl.url}'")
        if self.ocl.connect_timeout <= 0 or self.ocl.read_timeout <= 0:
            errors.append("OCL_CONNECT_TIMEOUT and OCL_READ_TIMEOUT must be positive")
        if self.ocl.max_retries < 0:
            errors.append("OCL_MAX_RETRIES must not be negative")
        if self.system.stale_run_minutes <= 0:
            errors.append("SYNC_STALE_RUN_MINUTES must be positive")

        if errors:
            raise ValueError(f"Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors))

        return True


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global config instance"""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def reload_config() -> Config:
    """Reload configuration from environment"""
    global _config
    _config = Config.load()
    return _config
