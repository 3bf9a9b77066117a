"""
Website diagnosis for LeadScan.
Fetches a business website and classifies the outcome into a status and lead type.

Classification order:
- No URL = no_website (build lead), no network call
- Network failure = timeout / dns / refused / ssl status (fix lead)
- Final URL on a social host = redirect_social (social_only lead)
- 4xx / 5xx = http error (fix lead), except 403 bot blocks which count as up
- Hosting failure signature in the body = parked / hosting_expired (fix lead)
- Anything else = up (no lead)
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

import requests
from requests.exceptions import ConnectionError, RequestException, SSLError, Timeout
from urllib3.exceptions import MaxRetryError, NameResolutionError, NewConnectionError
from urllib3.exceptions import TimeoutError as Urllib3TimeoutError

from .config import Config, SignatureConfig
from .fetcher import FetchResponse, fetch, normalize_url
from .signatures import detect_platform
from .social_links import extract_social_links, is_social_redirect
from .logging_setup import get_logger

logger = get_logger("website_checker")


class WebsiteStatus(str, Enum):
    UP = "up"
    HTTP_4XX = "http_4xx"
    HTTP_5XX = "http_5xx"
    TIMEOUT = "timeout"
    SSL_EXPIRED = "ssl_expired"
    SSL_INVALID = "ssl_invalid"
    CONNECTION_REFUSED = "connection_refused"
    DNS_FAILURE = "dns_failure"
    HOSTING_EXPIRED = "hosting_expired"
    PARKED = "parked"
    REDIRECT_SOCIAL = "redirect_social"
    NO_WEBSITE = "no_website"


class LeadType(str, Enum):
    FIX = "fix"
    BUILD = "build"
    SOCIAL_ONLY = "social_only"


# Statuses meaning the site itself is broken
DOWN_STATUSES = frozenset({
    WebsiteStatus.HTTP_4XX,
    WebsiteStatus.HTTP_5XX,
    WebsiteStatus.TIMEOUT,
    WebsiteStatus.SSL_EXPIRED,
    WebsiteStatus.SSL_INVALID,
    WebsiteStatus.CONNECTION_REFUSED,
    WebsiteStatus.DNS_FAILURE,
    WebsiteStatus.HOSTING_EXPIRED,
    WebsiteStatus.PARKED,
})

DETAIL_TIMEOUT = "Request timed out"
DETAIL_DNS = "Domain not found"
DETAIL_REFUSED = "Connection refused"
DETAIL_SSL_EXPIRED = "SSL certificate expired"
DETAIL_SSL_INVALID = "SSL certificate invalid"

# Lowercase markers found in requests/urllib3 error text
DNS_ERROR_MARKERS = (
    "nameresolutionerror",
    "failed to resolve",
    "name or service not known",
    "nodename nor servname",
    "no address associated",
    "getaddrinfo",
    "enotfound",
)
REFUSED_ERROR_MARKERS = (
    "connection refused",
    "econnrefused",
    "errno 111",
    "winerror 10061",
)


def is_down(status) -> bool:
    return WebsiteStatus(status) in DOWN_STATUSES


def lead_type_for(status) -> Optional[LeadType]:
    """Lead type implied by a status; None for working sites."""
    status = WebsiteStatus(status)
    if status == WebsiteStatus.UP:
        return None
    if status == WebsiteStatus.NO_WEBSITE:
        return LeadType.BUILD
    if status == WebsiteStatus.REDIRECT_SOCIAL:
        return LeadType.SOCIAL_ONLY
    return LeadType.FIX


@dataclass(frozen=True)
class WebsiteCheckResult:
    """Result of one website diagnosis."""
    status: WebsiteStatus
    lead_type: Optional[LeadType]
    status_detail: Optional[str] = None
    platform_detected: Optional[str] = None
    social_links: Optional[Dict[str, str]] = None

    @classmethod
    def for_status(cls, status, **kwargs) -> "WebsiteCheckResult":
        status = WebsiteStatus(status)
        return cls(status=status, lead_type=lead_type_for(status), **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready mapping; unset optional fields are omitted."""
        data: Dict[str, Any] = {
            "status": self.status.value,
            "lead_type": self.lead_type.value if self.lead_type else None,
        }
        if self.status_detail is not None:
            data["status_detail"] = self.status_detail
        if self.platform_detected is not None:
            data["platform_detected"] = self.platform_detected
        if self.social_links is not None:
            data["social_links"] = dict(self.social_links)
        return data


def _error_message(error: BaseException) -> str:
    return str(error) or type(error).__name__


def _connection_reason(error: BaseException) -> Optional[BaseException]:
    """The urllib3 error a requests ConnectionError wraps, if any."""
    reason = error.args[0] if error.args else None
    if isinstance(reason, MaxRetryError):
        reason = reason.reason
    return reason if isinstance(reason, BaseException) else None


def _sniff_error_text(message: str, max_chars: int) -> Tuple[WebsiteStatus, str]:
    """Classify an error purely from its text. First match wins."""
    lowered = message.lower()

    if "abort" in lowered or "timeout" in lowered or "timed out" in lowered:
        return WebsiteStatus.TIMEOUT, DETAIL_TIMEOUT
    if "enotfound" in lowered or "getaddrinfo" in lowered:
        return WebsiteStatus.DNS_FAILURE, DETAIL_DNS
    if "econnrefused" in lowered:
        return WebsiteStatus.CONNECTION_REFUSED, DETAIL_REFUSED
    if "certificate" in lowered or "ssl" in lowered or "tls" in lowered:
        if "expired" in lowered:
            return WebsiteStatus.SSL_EXPIRED, DETAIL_SSL_EXPIRED
        return WebsiteStatus.SSL_INVALID, DETAIL_SSL_INVALID

    return WebsiteStatus.CONNECTION_REFUSED, message[:max_chars]


def classify_fetch_error(
    error: BaseException,
    config: SignatureConfig = None,
) -> Tuple[WebsiteStatus, str]:
    """
    Map a failed fetch to (status, detail).

    requests exception types are trusted first. For connection errors the
    wrapped urllib3 error, then the message text, decides between DNS and
    refused connections. Other errors fall back to substring sniffing.
    """
    config = config or SignatureConfig()
    message = _error_message(error)
    lowered = message.lower()

    if isinstance(error, Timeout):
        return WebsiteStatus.TIMEOUT, DETAIL_TIMEOUT
    if isinstance(error, SSLError):
        if "expired" in lowered:
            return WebsiteStatus.SSL_EXPIRED, DETAIL_SSL_EXPIRED
        return WebsiteStatus.SSL_INVALID, DETAIL_SSL_INVALID
    if isinstance(error, ConnectionError):
        reason = _connection_reason(error)
        if isinstance(reason, NameResolutionError):
            return WebsiteStatus.DNS_FAILURE, DETAIL_DNS
        if isinstance(reason, NewConnectionError) and isinstance(reason.__cause__, ConnectionRefusedError):
            return WebsiteStatus.CONNECTION_REFUSED, DETAIL_REFUSED
        # NewConnectionError subclasses ConnectTimeoutError in urllib3 2.x
        if isinstance(reason, Urllib3TimeoutError) and not isinstance(reason, NewConnectionError):
            return WebsiteStatus.TIMEOUT, DETAIL_TIMEOUT
        if any(marker in lowered for marker in DNS_ERROR_MARKERS):
            return WebsiteStatus.DNS_FAILURE, DETAIL_DNS
        if any(marker in lowered for marker in REFUSED_ERROR_MARKERS):
            return WebsiteStatus.CONNECTION_REFUSED, DETAIL_REFUSED

    return _sniff_error_text(message, config.error_detail_max_chars)


def looks_like_bot_block(html: str, config: SignatureConfig = None) -> bool:
    """403 pages that are tiny or mention bot mitigation."""
    config = config or SignatureConfig()
    if len(html) < config.bot_block_max_body_chars:
        return True
    lowered = html.lower()
    return any(marker in lowered for marker in config.bot_block_markers)


def _persist_social_links(db, place_id: str, social_links: Dict[str, str]) -> None:
    """Best-effort write; failures never affect the diagnosis."""
    if db is None or not social_links:
        return
    try:
        db.update_business_social_links(place_id, json.dumps(social_links))
    except Exception as e:
        logger.warning(f"Could not save social links for {place_id}: {e}")


def classify_response(
    response: FetchResponse,
    social_links: Dict[str, str],
    config: SignatureConfig = None,
) -> WebsiteCheckResult:
    """Interpret a fetched page that did not land on a social host."""
    config = config or SignatureConfig()
    html = response.text or ""
    code = response.status_code

    if 400 <= code < 500:
        if code == 403 and looks_like_bot_block(html, config):
            return WebsiteCheckResult.for_status(WebsiteStatus.UP, social_links=social_links)
        return WebsiteCheckResult.for_status(
            WebsiteStatus.HTTP_4XX, status_detail=str(code), social_links=social_links
        )

    if code >= 500:
        return WebsiteCheckResult.for_status(
            WebsiteStatus.HTTP_5XX, status_detail=str(code), social_links=social_links
        )

    match = detect_platform(html, config)
    if match:
        return WebsiteCheckResult.for_status(
            match.status,
            status_detail=match.detail,
            platform_detected=match.platform,
            social_links=social_links,
        )

    return WebsiteCheckResult.for_status(WebsiteStatus.UP, social_links=social_links)


def check_website(
    url: Optional[str],
    place_id: str,
    db=None,
    config: Config = None,
    session: requests.Session = None,
) -> WebsiteCheckResult:
    """
    Diagnose a business website.

    db is any store with update_business_social_links(place_id, json);
    pass None to skip persisting discovered social links.
    Network and HTTP failures are folded into the result, never raised.
    """
    if not url or not url.strip():
        return WebsiteCheckResult.for_status(WebsiteStatus.NO_WEBSITE)

    config = config or Config()
    url = normalize_url(url)

    try:
        response = fetch(url, config.fetch, session=session)
    except RequestException as e:
        status, detail = classify_fetch_error(e, config.signatures)
        logger.info(f"{url} unreachable: {status.value} ({_error_message(e)[:200]})")
        return WebsiteCheckResult.for_status(status, status_detail=detail)

    if is_social_redirect(response.url):
        hostname = urlparse(response.url).hostname or ""
        return WebsiteCheckResult.for_status(
            WebsiteStatus.REDIRECT_SOCIAL, status_detail=f"Redirects to {hostname}"
        )

    social_links = extract_social_links(response.text)
    _persist_social_links(db, place_id, social_links)

    result = classify_response(response, social_links, config.signatures)
    logger.debug(f"{url} -> {result.status.value} ({result.status_detail})")
    return result


def check_with_isolation(
    url: Optional[str],
    place_id: str,
    db=None,
    config: Config = None,
    session: requests.Session = None,
) -> WebsiteCheckResult:
    """
    check_website with full error isolation for batch scans.
    Never raises exceptions to caller.
    """
    try:
        return check_website(url, place_id, db=db, config=config, session=session)
    except Exception as e:
        logger.error(f"Unexpected error checking {url}: {e}")
        max_chars = (config or Config()).signatures.error_detail_max_chars
        return WebsiteCheckResult.for_status(
            WebsiteStatus.CONNECTION_REFUSED,
            status_detail=_error_message(e)[:max_chars],
        )
