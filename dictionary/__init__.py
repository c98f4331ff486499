"""Local terminology dictionary module"""

from .base import DataConverter, DictionaryStore, DictionaryStoreError, StoredEntity
from .sql_store import SQLDictionaryStore
from .graph_store import GraphDictionaryStore, GraphQueryBuilder
from .factory import get_dictionary_store

__all__ = [
    'DataConverter',
    'DictionaryStore',
    'DictionaryStoreError',
    'StoredEntity',
    'SQLDictionaryStore',
    'GraphDictionaryStore',
    'GraphQueryBuilder',
    'get_dictionary_store'
]
