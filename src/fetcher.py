"""
HTTP fetching for LeadScan.
Performs a browser-like GET with an absolute per-attempt deadline and
fixed-pause retries.

The deadline covers every redirect hop and the whole body. Redirects are
followed by hand so each hop only gets the time that is left, and the body
is read with read1() so a server trickling bytes cannot hold an attempt open.
"""

import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin, urlparse

import requests
from requests.exceptions import (
    ChunkedEncodingError,
    ConnectionError,
    ContentDecodingError,
    ReadTimeout,
    SSLError,
    Timeout,
    TooManyRedirects,
)
from urllib3.exceptions import DecodeError, ProtocolError, ReadTimeoutError
from urllib3.exceptions import SSLError as Urllib3SSLError

from .config import FetchConfig
from .retry import call_with_retries
from .logging_setup import get_logger

logger = get_logger("fetcher")

# Network-level failures worth another attempt. SSLError and ConnectTimeout
# are subclasses of these; a body cut off mid-transfer surfaces as
# ChunkedEncodingError. HTTP error statuses never raise.
RETRYABLE_ERRORS = (ConnectionError, Timeout, ChunkedEncodingError)


@dataclass
class FetchResponse:
    """Fetched page after redirects."""
    status_code: int
    url: str
    text: str


def normalize_url(url: str) -> str:
    """Ensure URL has a scheme."""
    if not url:
        return url
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        return f"https://{url}"
    return url


def _remaining(deadline: float, url: str) -> float:
    """Seconds left in the attempt. Raises ReadTimeout once the deadline has passed."""
    left = deadline - time.monotonic()
    if left <= 0:
        raise ReadTimeout(f"Read timed out: {url} did not finish within the attempt deadline")
    return left


def _limit_socket_wait(response: requests.Response, seconds: float) -> None:
    # The next blocking recv may not outlive the attempt
    connection = getattr(response.raw, "connection", None)
    sock = getattr(connection, "sock", None)
    if sock is not None:
        sock.settimeout(seconds)


def _read_body(response: requests.Response, deadline: float, chunk_size: int) -> bytes:
    """
    Read the body with the deadline checked before and after every read.

    urllib3 errors are re-raised as the requests exceptions that the retry
    policy and the error classifier work with.
    """
    chunks = []
    while True:
        _limit_socket_wait(response, _remaining(deadline, response.url))
        try:
            chunk = response.raw.read1(chunk_size, decode_content=True)
        except ReadTimeoutError as e:
            raise ReadTimeout(e, response=response) from e
        except Urllib3SSLError as e:
            raise SSLError(e, response=response) from e
        except ProtocolError as e:
            raise ChunkedEncodingError(e, response=response) from e
        except DecodeError as e:
            raise ContentDecodingError(e, response=response) from e
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


def _decode(body: bytes, encoding: Optional[str]) -> str:
    try:
        return body.decode(encoding or "utf-8", errors="replace")
    except LookupError:
        # Unknown charset label from the server
        return body.decode("utf-8", errors="replace")


def _open(url: str, config: FetchConfig, session: requests.Session, deadline: float) -> requests.Response:
    """GET url and follow redirects; each hop gets only the time left before the deadline."""
    for _ in range(config.max_redirects + 1):
        response = session.get(
            url,
            timeout=_remaining(deadline, url),
            headers=config.headers,
            allow_redirects=False,
            verify=config.verify_ssl,
            stream=True,
        )
        if not response.is_redirect:
            return response
        location = response.headers["location"]
        response.close()
        url = urljoin(response.url or url, location)
    raise TooManyRedirects(f"Exceeded {config.max_redirects} redirects", response=response)


def fetch_once(
    url: str,
    config: FetchConfig,
    session: requests.Session,
) -> FetchResponse:
    """Single GET attempt bounded by config.request_timeout_seconds overall."""
    deadline = time.monotonic() + config.request_timeout_seconds

    response = _open(url, config, session, deadline)
    try:
        body = _read_body(response, deadline, config.chunk_size)
        return FetchResponse(
            status_code=response.status_code,
            url=response.url or url,
            text=_decode(body, response.encoding),
        )
    finally:
        response.close()


def fetch(
    url: str,
    config: FetchConfig = None,
    session: requests.Session = None,
) -> FetchResponse:
    """
    Fetch a website, retrying network failures.

    Returns the final response (any status code).
    Raises the last requests exception once all attempts fail.
    """
    config = config or FetchConfig()
    url = normalize_url(url)
    owns_session = session is None
    session = session or requests.Session()

    try:
        return call_with_retries(
            func=lambda: fetch_once(url, config, session),
            config=config.retry,
            retry_on=RETRYABLE_ERRORS,
            logger=logger,
            label=f"fetch {urlparse(url).netloc}",
        )
    finally:
        if owns_session:
            session.close()
