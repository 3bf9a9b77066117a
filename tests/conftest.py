"""
Shared pytest fixtures for LeadScan tests.
"""

import itertools
import socket
import threading
from pathlib import Path
from typing import Callable, Generator, List
from unittest.mock import Mock

import pytest
import requests

from src.config import (
    Config,
    DatabaseConfig,
    FetchConfig,
    RetryConfig,
    ScanConfig,
    SchedulerConfig,
    SignatureConfig,
)
from src.db import Database, Business


@pytest.fixture
def retry_config() -> RetryConfig:
    """Three attempts without pauses."""
    return RetryConfig(
        max_retries=2,
        base_delay_seconds=0.0,
        max_delay_seconds=0.0,
    )


@pytest.fixture
def fetch_config(retry_config: RetryConfig) -> FetchConfig:
    return FetchConfig(request_timeout_seconds=5, retry=retry_config)


@pytest.fixture
def signature_config() -> SignatureConfig:
    return SignatureConfig()


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    """Temporary database path for tests."""
    return tmp_path / "test_leadscan.db"


@pytest.fixture
def database_config(test_db_path: Path) -> DatabaseConfig:
    """Database configuration pointing to temp database."""
    return DatabaseConfig(db_path=test_db_path)


@pytest.fixture
def test_database(database_config: DatabaseConfig) -> Generator[Database, None, None]:
    """Initialized test database."""
    db = Database(database_config)
    yield db
    db.close()


@pytest.fixture
def mock_config(
    fetch_config: FetchConfig,
    signature_config: SignatureConfig,
    database_config: DatabaseConfig,
) -> Config:
    """Full configuration for tests: no pauses, temp database."""
    return Config(
        fetch=fetch_config,
        signatures=signature_config,
        scheduler=SchedulerConfig(),
        scan=ScanConfig(delay_between_checks_seconds=0, max_businesses=100),
        database=database_config,
        log_level="DEBUG",
    )


@pytest.fixture
def make_response() -> Callable[..., Mock]:
    """Factory for streamed requests.Response stand-ins."""
    def _make(status_code=200, text="", url="https://example.com/", encoding="utf-8", location=None):
        response = Mock()
        response.status_code = status_code
        response.url = url
        response.encoding = encoding
        response.is_redirect = location is not None
        response.headers = {"Content-Type": "text/html"}
        if location is not None:
            response.headers["location"] = location
        # Body then EOF, again for every reuse of the same response
        response.raw.read1.side_effect = itertools.cycle([text.encode("utf-8"), b""])
        return response
    return _make


@pytest.fixture
def make_session(make_response) -> Callable[..., Mock]:
    """Factory for a session whose get() returns one canned response."""
    def _make(**kwargs):
        session = Mock()
        session.get.return_value = make_response(**kwargs)
        return session
    return _make


@pytest.fixture
def sample_business() -> Business:
    return Business(
        place_id="place_joes",
        name="Joe's Plumbing",
        address="123 Main St, Austin, TX",
        phone="555-0100",
        website_url="https://joesplumbing.example",
        category="plumber",
        review_count=42,
        rating=4.6,
    )


@pytest.fixture
def sample_html_modern() -> str:
    """A small working business site with social links."""
    return """
    <!DOCTYPE html>
    <html lang="en">
    <head>
        <meta charset="UTF-8">
        <title>Professional Plumbing Services</title>
    </head>
    <body>
        <h1>Professional Plumbing Services</h1>
        <p>24/7 emergency service available.</p>
        <footer>
            <a href="https://www.facebook.com/joesplumbing">Facebook</a>
            <a href="https://instagram.com/joes.plumbing">Instagram</a>
        </footer>
    </body>
    </html>
    """


@pytest.fixture
def sample_html_godaddy_parked() -> str:
    return """
    <html>
    <head><title>example.com</title></head>
    <body>
        <p>This domain is parked free, courtesy of GoDaddy.com.</p>
    </body>
    </html>
    """


@pytest.fixture
def sample_html_parked() -> str:
    """Sample HTML for a parked domain."""
    return """
    <!DOCTYPE html>
    <html>
    <head><title>Domain For Sale</title></head>
    <body>
        <h1>This domain is for sale</h1>
        <p>Contact us to purchase this premium domain name.</p>
    </body>
    </html>
    """


@pytest.fixture
def sample_html_squarespace_expired() -> str:
    return """
    <html><body>
        <h1>This website has expired.</h1>
        <p>Please login to Squarespace to renew.</p>
    </body></html>
    """


@pytest.fixture
def long_paragraph() -> str:
    """Well over 2000 characters of visible text."""
    return "<p>" + "We fix leaking pipes, drains and water heaters across town. " * 60 + "</p>"


class LocalHTTPServer:
    """
    Raw-socket HTTP server on 127.0.0.1 for network behaviour tests.

    Each accepted connection reads one request head and hands the socket to
    reply(conn, path, stopping). The server never drains request bodies.
    """

    def __init__(self, reply: Callable):
        self.reply = reply
        self.requests: List[str] = []
        self.stopping = threading.Event()
        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._listener.bind(("127.0.0.1", 0))
        self._listener.listen(16)
        self._listener.settimeout(0.1)
        self.port = self._listener.getsockname()[1]
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def url(self, path: str = "/") -> str:
        return f"http://127.0.0.1:{self.port}{path}"

    @property
    def attempts(self) -> int:
        return len(self.requests)

    def _serve(self):
        while not self.stopping.is_set():
            try:
                conn, _ = self._listener.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            threading.Thread(target=self._handle, args=(conn,), daemon=True).start()

    def _handle(self, conn: socket.socket):
        conn.settimeout(5)
        with conn:
            head = b""
            try:
                while b"\r\n\r\n" not in head:
                    chunk = conn.recv(4096)
                    if not chunk:
                        return
                    head += chunk
                path = head.split(b"\r\n", 1)[0].split()[1].decode("latin-1")
                self.requests.append(path)
                self.reply(conn, path, self.stopping)
            except OSError:
                # Client hung up first
                return

    def close(self):
        self.stopping.set()
        self._listener.close()
        self._thread.join(timeout=2)


def _http_head(status: str = "200 OK", content_length: int = 0, extra: str = "") -> bytes:
    return (
        f"HTTP/1.1 {status}\r\n"
        f"Content-Type: text/html; charset=utf-8\r\n"
        f"Content-Length: {content_length}\r\n"
        f"{extra}"
        f"Connection: close\r\n\r\n"
    ).encode("latin-1")


@pytest.fixture
def http_head() -> Callable[..., bytes]:
    """Builder for a response head with Connection: close."""
    return _http_head


@pytest.fixture
def local_server() -> Generator[Callable[[Callable], LocalHTTPServer], None, None]:
    """Factory starting LocalHTTPServer instances; all are stopped at teardown."""
    servers = []

    def _start(reply: Callable) -> LocalHTTPServer:
        server = LocalHTTPServer(reply)
        servers.append(server)
        return server

    yield _start
    for server in servers:
        server.close()


@pytest.fixture
def closed_port() -> int:
    """A localhost port with nothing listening on it."""
    spare = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    spare.bind(("127.0.0.1", 0))
    port = spare.getsockname()[1]
    spare.close()
    return port


@pytest.fixture
def direct_session() -> Generator[requests.Session, None, None]:
    """Real session that ignores proxy settings from the environment."""
    session = requests.Session()
    session.trust_env = False
    yield session
    session.close()
