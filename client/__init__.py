"""Remote concept repository client module"""

from .errors import OclClientError, TransportFailure, ProtocolFailure, MalformedRecordError
from .records import RecordKind, RemoteRecord, OclConcept, OclMapping
from .stream import JsonArrayStreamer, iter_remote_records
from .ocl_client import OclClient, OclResponse, format_updated_since, get_ocl_client

__all__ = [
    'OclClientError',
    'TransportFailure',
    'ProtocolFailure',
    'MalformedRecordError',
    'RecordKind',
    'RemoteRecord',
    'OclConcept',
    'OclMapping',
    'JsonArrayStreamer',
    'iter_remote_records',
    'OclClient',
    'OclResponse',
    'format_updated_since',
    'get_ocl_client'
]
