"""
Download Orchestrator
Fetches addon archives from an ordered list of candidate sources
"""

import hashlib
import io
import logging
import zipfile
from dataclasses import dataclass
from typing import Optional

import requests

from errors import AllSourcesExhausted, InstallCancelled

logger = logging.getLogger(__name__)

USER_AGENT = 'eso-addon-manager'
CHUNK_SIZE = 8192
DEFAULT_TIMEOUT = 30


@dataclass(frozen=True)
class DownloadUpdate:
    """Progress report from a download.

    kind is one of 'attempt' (a source is being tried), 'progress' (bytes
    arrived) or 'attempt_failed' (the source failed, the next one follows).
    total is None when the server sent no content length.
    """
    kind: str
    source: object
    downloaded: int = 0
    total: Optional[int] = None
    error: Optional[str] = None

    @property
    def fraction(self):
        if not self.total:
            return None
        return min(self.downloaded / self.total, 1.0)


class _AttemptFailed(Exception):
    pass


def verify_checksum(data, checksum):
    """Compare archive bytes against 'sha256:<hex>', 'md5:<hex>' or bare sha256 hex.

    Returns:
        bool - True when no checksum is given or it matches
    """
    if not checksum:
        return True
    algorithm, _, expected = checksum.partition(':')
    if not expected:
        algorithm, expected = 'sha256', checksum
    try:
        digest = hashlib.new(algorithm.lower(), data).hexdigest()
    except ValueError:
        logger.warning("Unknown checksum algorithm %s, skipping verification", algorithm)
        return True
    return digest.lower() == expected.strip().lower()


class DownloadOrchestrator:
    def __init__(self, session=None, timeout=DEFAULT_TIMEOUT, headers=None):
        """Initialize the orchestrator.

        Args:
            session: Optional requests.Session - HTTP session to reuse
            timeout: float - Per-attempt timeout in seconds
            headers: Optional dict - Extra request headers
        """
        self.session = session or requests.Session()
        self.timeout = timeout
        self.headers = {'User-Agent': USER_AGENT}
        if headers:
            self.headers.update(headers)

    def download(self, sources, on_progress=None, checksum=None, cancel_event=None):
        """Download archive bytes, trying each source strictly in order.

        Args:
            sources: list - DownloadSource candidates, preferred first
            on_progress: Optional callable - receives DownloadUpdate objects
            checksum: Optional str - Expected checksum of the archive
            cancel_event: Optional threading.Event - set to abort

        Returns:
            bytes - Archive contents from the first source that succeeded

        Raises:
            AllSourcesExhausted - every source failed
            InstallCancelled - cancel_event was set
        """
        report = on_progress or (lambda update: None)
        failures = []

        for source in sources:
            if cancel_event is not None and cancel_event.is_set():
                raise InstallCancelled('Download cancelled')

            report(DownloadUpdate('attempt', source))
            try:
                data = self._attempt(source, report, cancel_event)
                if not zipfile.is_zipfile(io.BytesIO(data)):
                    raise _AttemptFailed('response is not a ZIP archive')
                if not verify_checksum(data, checksum):
                    raise _AttemptFailed('checksum mismatch')
            except (_AttemptFailed, requests.RequestException) as e:
                reason = str(e) or e.__class__.__name__
                logger.warning("Download from %s (%s) failed: %s", source.url, source.kind, reason)
                failures.append((source, reason))
                report(DownloadUpdate('attempt_failed', source, error=reason))
                continue

            logger.info("Downloaded %d bytes from %s (%s)", len(data), source.url, source.kind)
            return data

        raise AllSourcesExhausted(failures)

    def _attempt(self, source, report, cancel_event):
        response = self.session.get(source.url, headers=self.headers, stream=True, timeout=self.timeout)
        try:
            if not 200 <= response.status_code < 300:
                raise _AttemptFailed(f'HTTP {response.status_code}')

            total = self._content_length(response)
            buffer = bytearray()
            report(DownloadUpdate('progress', source, 0, total))
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if cancel_event is not None and cancel_event.is_set():
                    raise InstallCancelled('Download cancelled')
                if not chunk:
                    continue
                buffer.extend(chunk)
                report(DownloadUpdate('progress', source, len(buffer), total))
            return bytes(buffer)
        finally:
            response.close()

    def _content_length(self, response):
        value = response.headers.get('Content-Length') if response.headers else None
        try:
            length = int(value)
        except (TypeError, ValueError):
            return None
        return length if length > 0 else None
