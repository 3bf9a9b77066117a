"""
Hosting-provider failure signatures for LeadScan.

Each rule recognises one provider's expired, parked or suspended page.
Rules are plain data; detect_platform() applies them in table order.

Matching philosophy:
- Short pages (error/placeholder pages) need a single pattern hit
- Pages with substantial visible text are probably real sites that merely
  mention "expired" or "suspended", so they need two hits from one family
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Pattern

from .config import SignatureConfig

HOSTING_EXPIRED = "hosting_expired"
PARKED = "parked"

_FLAGS = re.IGNORECASE


@dataclass(frozen=True)
class SignatureRule:
    """A named family of patterns mapped to one outcome."""
    name: str
    patterns: List[Pattern]
    status: str
    detail: str
    # Overrides the content-length based threshold when set
    required_matches: Optional[int] = None


@dataclass(frozen=True)
class PlatformMatch:
    """Outcome of a rule that fired."""
    rule: str
    status: str
    detail: str

    @property
    def platform(self) -> str:
        """Rule name without its outcome suffix, e.g. godaddy_parked -> godaddy."""
        return self.rule.rsplit("_", 1)[0]


def _compile(*patterns: str) -> List[Pattern]:
    return [re.compile(p, _FLAGS) for p in patterns]


SIGNATURE_RULES: List[SignatureRule] = [
    SignatureRule(
        name="squarespace_expired",
        patterns=_compile(
            r"your\s+trial\s+has\s+ended",
            r"this\s+website\s+is\s+no\s+longer\s+available",
            r"renew\s+your\s+subscription.*squarespace",
            r"squarespace.*subscription.*expired",
            r"this\s+(?:website|site)\s+has\s+expired.*squarespace",
        ),
        status=HOSTING_EXPIRED,
        detail="Squarespace expired",
    ),
    SignatureRule(
        name="godaddy_parked",
        patterns=_compile(
            r"parked\s+free.*courtesy\s+of\s+godaddy",
            r"this\s+(?:web\s+page|domain)\s+is\s+parked.*godaddy",
            r"<title>parked\s+domain</title>",
        ),
        status=PARKED,
        detail="GoDaddy parked",
    ),
    SignatureRule(
        name="godaddy_expired",
        patterns=_compile(
            r"this\s+domain\s+(?:name\s+)?has\s+expired",
            r"renew\s+(?:it\s+)?now.*godaddy",
        ),
        status=HOSTING_EXPIRED,
        detail="GoDaddy expired",
    ),
    SignatureRule(
        name="wix_expired",
        patterns=_compile(
            r"this\s+site\s+was\s+created\s+with.*wix.*but\s+is\s+no\s+longer\s+active",
            r"wix\.com.*site\s+not\s+available",
            r"upgrade\s+your\s+wix\s+account",
        ),
        status=HOSTING_EXPIRED,
        detail="Wix expired",
    ),
    SignatureRule(
        name="weebly_expired",
        patterns=_compile(
            r"this\s+weebly\s+website\s+is\s+currently\s+unavailable",
            r"weebly\.com.*no\s+longer\s+available",
        ),
        status=HOSTING_EXPIRED,
        detail="Weebly expired",
    ),
    SignatureRule(
        name="namecheap_parked",
        patterns=_compile(
            r"this\s+domain\s+is\s+parked\s+by.*namecheap",
            r"namecheap\.com.*parking",
        ),
        status=PARKED,
        detail="Namecheap parked",
    ),
    SignatureRule(
        name="generic_parked",
        patterns=_compile(
            r"this\s+domain\s+(?:is\s+)?(?:for\s+sale|available\s+for\s+purchase)",
            r"buy\s+this\s+domain",
            r"<title>(?:domain\s+)?(?:for\s+sale|parked)</title>",
        ),
        status=PARKED,
        detail="Domain parked",
    ),
    SignatureRule(
        name="generic_suspended",
        patterns=_compile(
            r"(?:account|website|hosting)\s+(?:has\s+been\s+)?suspended",
            r"this\s+(?:account|site)\s+is\s+suspended",
        ),
        status=HOSTING_EXPIRED,
        detail="Hosting suspended",
    ),
]

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


def visible_text(html: str) -> str:
    """Rough visible text: tags replaced by spaces, whitespace collapsed."""
    if not html:
        return ""
    text = _TAG_RE.sub(" ", html)
    return _WHITESPACE_RE.sub(" ", text).strip()


def count_matches(rule: SignatureRule, html: str) -> int:
    """Number of distinct patterns in the rule that occur in the page."""
    return sum(1 for pattern in rule.patterns if pattern.search(html))


def required_matches(rule: SignatureRule, substantial: bool, config: SignatureConfig) -> int:
    if rule.required_matches is not None:
        return rule.required_matches
    if substantial:
        return config.substantial_required_matches
    return config.short_required_matches


def detect_platform(
    html: str,
    config: SignatureConfig = None,
    rules: List[SignatureRule] = None,
) -> Optional[PlatformMatch]:
    """
    Find the first hosting-failure rule the page satisfies.
    Returns None for pages that look like normal sites.
    """
    if not html:
        return None

    config = config or SignatureConfig()
    rules = SIGNATURE_RULES if rules is None else rules
    substantial = len(visible_text(html)) > config.substantial_content_chars

    for rule in rules:
        if count_matches(rule, html) >= required_matches(rule, substantial, config):
            return PlatformMatch(rule=rule.name, status=rule.status, detail=rule.detail)

    return None
