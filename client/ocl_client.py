"""
OCL Client Module
Fetches incremental exports from the remote concept repository.
Uses Token auth, the requests library, retries on 429/5xx and a bounded timeout.
"""

import gzip
import io
import logging
import tempfile
import time
import zipfile
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import IO, Any, Dict, Iterator, List, Optional

import requests

from config.settings import OCLConfig
from .errors import ProtocolFailure, TransportFailure
from .records import RemoteRecord
from .stream import DEFAULT_CHUNK_SIZE, iter_remote_records

logger = logging.getLogger(__name__)

UPDATED_SINCE_FORMAT = "%Y-%m-%dT%H:%M:%S"
RETRY_STATUS_CODES = (429, 500, 502, 503)

_ZIP_MAGIC = b"PK\x03\x04"
_EMPTY_ZIP_MAGIC = b"PK\x05\x06"
_GZIP_MAGIC = b"\x1f\x8b"


def _is_seekable(stream: IO) -> bool:
    try:
        return bool(stream.seekable())
    except (AttributeError, ValueError):
        return False


def format_updated_since(updated_since: datetime) -> str:
    """Render a resume timestamp the way the export API expects it (UTC)"""
    if updated_since.tzinfo is not None:
        updated_since = updated_since.astimezone(timezone.utc)
    return updated_since.strftime(UPDATED_SINCE_FORMAT)


class OclResponse:
    """
    Unpacked delta: a payload stream plus response metadata.

    ``updated_to`` is the server's own notion of "as of when" the delta is
    complete. ``record_count`` is -1 when the server did not report it.
    """

    def __init__(self, stream: IO, record_count: int, updated_to: datetime,
                 resources: Optional[List[Any]] = None):
        self.stream = stream
        self.record_count = record_count
        self.updated_to = updated_to
        self._resources = resources or []

    @property
    def seekable(self) -> bool:
        return _is_seekable(self.stream)

    def rewind(self):
        """Return to the start of the payload for another scan"""
        self.stream.seek(0)

    def iter_records(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[RemoteRecord]:
        """Lazily decode records from the current stream position, in wire order"""
        return iter_remote_records(self.stream, chunk_size=chunk_size)

    def close(self):
        for resource in [self.stream] + list(reversed(self._resources)):
            try:
                resource.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing delta payload: {e}")
        self._resources = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class OclClient:
    """Client for the incremental export endpoint of a subscription"""

    def __init__(self, config: Optional[OCLConfig] = None):
        """
        Initialize OCL client

        Args:
            config: OCL configuration, read from environment if not provided
        """
        self.config = config or OCLConfig.from_env()

    def _get_headers(self, token: Optional[str]) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Compress": "true",
        }
        if token:
            headers["Authorization"] = f"Token {token}"
        return headers

    def _get_params(self, updated_since: Optional[datetime]) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "includeConcepts": "true",
            "includeMappings": "true",
            "includeRetired": "true",
            "limit": self.config.page_limit,
        }
        if updated_since is not None:
            params["updatedSince"] = format_updated_since(updated_since)
        return params

    def _handle_error(self, response: requests.Response):
        """Interpret error response and raise TransportFailure with detail."""
        try:
            body = response.json()
        except Exception:
            body = response.text or None
        msg = f"OCL API error: {response.status_code}"
        if isinstance(body, dict) and isinstance(body.get("detail"), str):
            msg += f" ({body['detail']})"
        elif isinstance(body, str) and body:
            msg += f" ({body[:500]})"
        response.close()
        raise TransportFailure(msg, status_code=response.status_code, detail=body)

    def _request(self, url: str, params: Dict[str, Any], headers: Dict[str, str]) -> requests.Response:
        """Execute the GET with retries on 429/5xx and connection errors"""
        retries = self.config.max_retries
        last_exc: Optional[Exception] = None

        for attempt in range(retries + 1):
            try:
                resp = requests.get(
                    url,
                    params=params,
                    headers=headers,
                    timeout=self.config.timeout,
                    stream=True,
                )
            except requests.Timeout as e:
                raise TransportFailure(
                    f"OCL request timed out after {self.config.timeout}: {e}"
                ) from e
            except requests.RequestException as e:
                last_exc = e
                logger.warning(f"OCL request failed (attempt {attempt + 1}): {e}")
                if attempt < retries:
                    time.sleep(2 ** attempt)
                continue

            if resp.ok:
                return resp

            if resp.status_code in RETRY_STATUS_CODES and attempt < retries:
                retry_after = resp.headers.get("Retry-After")
                wait = float(retry_after) if retry_after and retry_after.isdigit() else (2 ** attempt)
                logger.warning(
                    f"OCL {resp.status_code} {resp.reason} (attempt {attempt + 1}), retrying in {wait:.1f}s"
                )
                resp.close()
                time.sleep(wait)
                continue

            self._handle_error(resp)

        raise TransportFailure(
            f"OCL request failed after {retries + 1} attempts: {last_exc!s}"
        ) from last_exc

    @staticmethod
    def _parse_updated_to(response: requests.Response) -> datetime:
        """Server-reported response time from the Date header"""
        header = response.headers.get("Date")
        if not header:
            raise ProtocolFailure("OCL response has no Date header", status_code=response.status_code)
        try:
            updated_to = parsedate_to_datetime(header)
        except (TypeError, ValueError) as e:
            raise ProtocolFailure(
                f"OCL response Date header is not a valid date: {header!r}",
                status_code=response.status_code
            ) from e
        if updated_to.tzinfo is None:
            updated_to = updated_to.replace(tzinfo=timezone.utc)
        return updated_to.astimezone(timezone.utc)

    @staticmethod
    def _parse_record_count(response: requests.Response) -> int:
        header = response.headers.get("num_found")
        if header and header.isdigit():
            return int(header)
        return -1

    def fetch_updates(self, url: str, token: Optional[str],
                      updated_since: Optional[datetime]) -> OclResponse:
        """
        Fetch everything changed since the given timestamp

        Args:
            url: Subscription URL (a source or collection version export)
            token: Optional API token
            updated_since: Resume point, None for a full sync

        Returns:
            OclResponse with the unpacked payload

        Raises:
            TransportFailure: network error, timeout or HTTP error status
            ProtocolFailure: the response cannot be unpacked
        """
        since = format_updated_since(updated_since) if updated_since else "the beginning"
        logger.info(f"Fetching updates from {url} since {since}")

        response = self._request(url, self._get_params(updated_since), self._get_headers(token))
        try:
            updated_to = self._parse_updated_to(response)
            record_count = self._parse_record_count(response)

            if response.status_code == 204:
                logger.info("✓ No content, delta is empty")
                return OclResponse(io.BytesIO(b""), 0, updated_to)

            spool = tempfile.SpooledTemporaryFile(max_size=self.config.spool_max_memory)
            try:
                for chunk in response.iter_content(chunk_size=DEFAULT_CHUNK_SIZE):
                    if chunk:
                        spool.write(chunk)
            except requests.RequestException as e:
                spool.close()
                raise TransportFailure(f"OCL response stream broke off: {e}") from e
            spool.seek(0)
        finally:
            response.close()

        logger.info(f"✓ Received delta updated to {updated_to.isoformat()}")
        return self.unzip_response(spool, updated_to, record_count)

    def unzip_response(self, stream: IO, updated_to: datetime, record_count: int = -1) -> OclResponse:
        """
        Unpack a (possibly compressed) export into a readable payload stream

        A zip archive yields its first entry, gzip is decompressed lazily and
        anything else is taken as raw JSON.

        Args:
            stream: Binary stream holding the export
            updated_to: Server-reported "updated to" timestamp
            record_count: Record count if known

        Returns:
            OclResponse positioned at the start of the payload

        Raises:
            ProtocolFailure: the archive is corrupt
        """
        if not _is_seekable(stream):
            spool = tempfile.SpooledTemporaryFile(max_size=self.config.spool_max_memory)
            while True:
                chunk = stream.read(DEFAULT_CHUNK_SIZE)
                if not chunk:
                    break
                spool.write(chunk)
            stream.close()
            spool.seek(0)
            stream = spool

        magic = stream.read(4)
        stream.seek(0)

        if magic in (_ZIP_MAGIC, _EMPTY_ZIP_MAGIC):
            try:
                archive = zipfile.ZipFile(stream)
                names = [info.filename for info in archive.infolist() if not info.is_dir()]
            except zipfile.BadZipFile as e:
                stream.close()
                raise ProtocolFailure(f"OCL export is not a valid zip archive: {e}") from e
            if not names:
                archive.close()
                stream.close()
                return OclResponse(io.BytesIO(b""), 0, updated_to)
            logger.debug(f"Unzipping export entry {names[0]}")
            return OclResponse(archive.open(names[0]), record_count, updated_to,
                               resources=[stream, archive])

        if magic[:2] == _GZIP_MAGIC:
            return OclResponse(gzip.GzipFile(fileobj=stream, mode="rb"), record_count, updated_to,
                               resources=[stream])

        return OclResponse(stream, record_count, updated_to)


def get_ocl_client(config: Optional[OCLConfig] = None) -> OclClient:
    """Return an OclClient instance."""
    return OclClient(config)
