"""
Streaming Payload Decoder
Pulls records out of the delta payload one array element at a time, so
memory is bounded by a single record rather than the whole delta
"""

import codecs
import json
import logging
import zipfile
import zlib
from typing import IO, Iterable, Iterator, Tuple

from .errors import ProtocolFailure
from .records import RECORD_SECTIONS, RecordKind, RemoteRecord

logger = logging.getLogger(__name__)

_WHITESPACE = " \t\n\r"
_NUMBER_CHARS = "0123456789.eE+-"
DEFAULT_CHUNK_SIZE = 64 * 1024


class JsonArrayStreamer:
    """
    Incremental reader over a payload shaped like
    ``{"concepts": [...], "mappings": [...], ...}``.

    Elements of the record sections are decoded and yielded one by one as
    ``(section, element)``. Any other top-level member is decoded and dropped.
    An empty body yields nothing.
    """

    def __init__(self, stream: IO, sections: Iterable[str] = RECORD_SECTIONS,
                 chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._stream = stream
        self._sections = frozenset(sections)
        self._chunk_size = chunk_size
        self._json = json.JSONDecoder()
        self._bytes_decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self._pos = 0
        self._eof = False

    def _read(self) -> bool:
        """Append the next chunk to the buffer; False once the stream is exhausted"""
        if self._eof:
            return False
        try:
            chunk = self._stream.read(self._chunk_size)
        except (OSError, EOFError, zlib.error, zipfile.BadZipFile) as e:
            raise ProtocolFailure(f"Payload could not be decompressed: {e}") from e
        if isinstance(chunk, bytes):
            try:
                text = self._bytes_decoder.decode(chunk, final=not chunk)
            except UnicodeDecodeError as e:
                raise ProtocolFailure(f"Payload is not valid UTF-8: {e}") from e
        else:
            text = chunk or ""
        if not chunk:
            self._eof = True
            if not text:
                return False
        if self._pos:
            self._buffer = self._buffer[self._pos:]
            self._pos = 0
        self._buffer += text
        return True

    def _peek(self) -> str:
        """Next non-whitespace character without consuming it, '' at end of stream"""
        while True:
            while self._pos < len(self._buffer) and self._buffer[self._pos] in _WHITESPACE:
                self._pos += 1
            if self._pos < len(self._buffer):
                return self._buffer[self._pos]
            if not self._read():
                return ""

    def _expect(self, allowed: str) -> str:
        char = self._peek()
        if not char or char not in allowed:
            found = repr(char) if char else "end of payload"
            raise ProtocolFailure(f"Expected one of {allowed!r} in payload, found {found}")
        self._pos += 1
        return char

    def _value(self):
        """Decode the next complete JSON value, reading more input as needed"""
        self._peek()
        while True:
            try:
                value, end = self._json.raw_decode(self._buffer, self._pos)
            except json.JSONDecodeError as e:
                if self._read():
                    continue
                raise ProtocolFailure(f"Truncated or invalid JSON payload: {e.msg}") from e
            # A number running up to the buffer edge may continue in the next chunk
            if (isinstance(value, (int, float)) and not isinstance(value, bool)
                    and all(c in _NUMBER_CHARS for c in self._buffer[end:])
                    and self._read()):
                continue
            self._pos = end
            return value

    def __iter__(self) -> Iterator[Tuple[str, object]]:
        if self._peek() == "":
            return
        self._expect("{")
        if self._peek() == "}":
            self._pos += 1
            return

        while True:
            key = self._value()
            if not isinstance(key, str):
                raise ProtocolFailure("Payload object key is not a string")
            self._expect(":")

            if key in self._sections and self._peek() == "[":
                self._pos += 1
                if self._peek() == "]":
                    self._pos += 1
                else:
                    while True:
                        yield key, self._value()
                        if self._expect(",]") == "]":
                            break
            else:
                value = self._value()
                if key in self._sections and value is not None:
                    raise ProtocolFailure(
                        f"Payload member '{key}' is {type(value).__name__}, expected an array"
                    )

            if self._expect(",}") == "}":
                break

        if self._peek() != "":
            raise ProtocolFailure("Unexpected content after payload object")


def iter_remote_records(stream: IO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[RemoteRecord]:
    """
    Lazily decode every record of the payload in encounter order

    Args:
        stream: Binary or text stream positioned at the start of the payload
        chunk_size: Read size per pull

    Yields:
        RemoteRecord tagged with its kind and per-kind position
    """
    positions = {kind: 0 for kind in RecordKind}
    for section, element in JsonArrayStreamer(stream, chunk_size=chunk_size):
        kind = RecordKind.from_section(section)
        positions[kind] += 1
        yield RemoteRecord(kind=kind, data=element, position=positions[kind])
