"""Configuration module for the terminology sync system"""

from .settings import (
    Config,
    RDBMSConfig,
    Neo4jConfig,
    OCLConfig,
    SystemConfig,
    get_config,
    reload_config
)

__all__ = [
    'Config',
    'RDBMSConfig',
    'Neo4jConfig',
    'OCLConfig',
    'SystemConfig',
    'get_config',
    'reload_config'
]
