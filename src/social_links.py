"""
Social profile detection for LeadScan.
Finds social links in page HTML and recognises redirects onto social hosts.
"""

import re
from typing import Dict, Optional
from urllib.parse import urlparse

# The lookbehind keeps a host from matching as the tail of a longer name
# (dropbox.com must not read as x.com). Only the listed subdomains are
# accepted in front of a platform host.
_PREFIX = r"(?<![\w.-])(?:https?://)?(?:(?:www|m|mobile|business)\.)?"
_SLUG = r"/[^/\s\"'<>]+"

SOCIAL_PATTERNS = {
    "facebook": re.compile(_PREFIX + r"(?:facebook\.com|fb\.com)" + _SLUG, re.IGNORECASE),
    "instagram": re.compile(_PREFIX + r"instagram\.com" + _SLUG, re.IGNORECASE),
    "twitter": re.compile(_PREFIX + r"(?:twitter\.com|x\.com)" + _SLUG, re.IGNORECASE),
    "linkedin": re.compile(_PREFIX + r"linkedin\.com/(?:company|in)" + _SLUG, re.IGNORECASE),
    "yelp": re.compile(_PREFIX + r"yelp\.com/biz" + _SLUG, re.IGNORECASE),
}

# Hosts that mean the business has no site of its own
SOCIAL_REDIRECT_DOMAINS = [
    "facebook.com",
    "fb.com",
    "instagram.com",
    "twitter.com",
    "x.com",
]


def extract_social_links(html: str) -> Dict[str, str]:
    """Return the first profile URL found per platform; absent platforms are omitted."""
    links: Dict[str, str] = {}
    if not html:
        return links
    for platform, pattern in SOCIAL_PATTERNS.items():
        match = pattern.search(html)
        if match:
            links[platform] = match.group(0)
    return links


def _host(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def is_social_redirect(url: Optional[str]) -> bool:
    """Check if the URL lands on a social-media host."""
    if not url:
        return False
    host = _host(url)
    if not host:
        return False
    return any(host == domain or host.endswith(f".{domain}") for domain in SOCIAL_REDIRECT_DOMAINS)
