"""Company domain extraction from URLs, free text and email addresses."""

from __future__ import annotations

import re
from urllib.parse import urlsplit

from app.core.text import snippet
from app.models.listener import ExtractedDomain, ExtractionMethod

DOMAIN_BLOCKLIST: frozenset[str] = frozenset(
    {
        # social and code platforms
        "github.com",
        "gitlab.com",
        "bitbucket.org",
        "medium.com",
        "substack.com",
        "twitter.com",
        "x.com",
        "linkedin.com",
        "facebook.com",
        "instagram.com",
        "youtube.com",
        "reddit.com",
        "discord.com",
        "discord.gg",
        "slack.com",
        "telegram.org",
        "t.me",
        "whatsapp.com",
        # news
        "news.ycombinator.com",
        "ycombinator.com",
        "techcrunch.com",
        "wired.com",
        "theverge.com",
        "arstechnica.com",
        "engadget.com",
        "mashable.com",
        "cnet.com",
        "zdnet.com",
        "venturebeat.com",
        "reuters.com",
        "bloomberg.com",
        "wsj.com",
        "nytimes.com",
        "bbc.com",
        "bbc.co.uk",
        "cnn.com",
        "theguardian.com",
        "forbes.com",
        "businessinsider.com",
        "vice.com",
        "gizmodo.com",
        "kotaku.com",
        # infrastructure and cloud
        "google.com",
        "googleapis.com",
        "gstatic.com",
        "amazon.com",
        "amazonaws.com",
        "aws.amazon.com",
        "cloudflare.com",
        "cloudfront.net",
        "fastly.net",
        "akamai.com",
        "akamaized.net",
        "microsoft.com",
        "azure.com",
        "apple.com",
        "icloud.com",
        # developer tools and docs
        "stackoverflow.com",
        "stackexchange.com",
        "npmjs.com",
        "pypi.org",
        "rubygems.org",
        "docs.google.com",
        "drive.google.com",
        "notion.so",
        "figma.com",
        "miro.com",
        "trello.com",
        "asana.com",
        "jira.atlassian.com",
        "confluence.atlassian.com",
        "atlassian.com",
        # blog hosts
        "wordpress.com",
        "blogger.com",
        "blogspot.com",
        "squarespace.com",
        "wix.com",
        "weebly.com",
        "ghost.io",
        "hashnode.com",
        "dev.to",
        "hackernoon.com",
        # file sharing
        "dropbox.com",
        "box.com",
        "wetransfer.com",
        "sendgrid.com",
        # shorteners
        "bit.ly",
        "tinyurl.com",
        "goo.gl",
        "t.co",
        "ow.ly",
        # placeholders
        "example.com",
        "localhost",
        "test.com",
        # archives
        "archive.org",
        "web.archive.org",
        "archive.is",
        "archive.today",
        "webcache.googleusercontent.com",
        "wikipedia.org",
        "en.wikipedia.org",
        "wikimedia.org",
    }
)

# Platforms that are blocklisted as link hosts but are prospects themselves.
DOMAIN_ALLOWLIST: frozenset[str] = frozenset(
    {"reddit.com", "discord.com", "slack.com", "notion.so", "figma.com"}
)

FREEMAIL_DOMAINS: frozenset[str] = frozenset(
    {
        "gmail.com",
        "yahoo.com",
        "hotmail.com",
        "outlook.com",
        "icloud.com",
        "protonmail.com",
        "fastmail.com",
        "hey.com",
        "me.com",
        "mac.com",
        "live.com",
        "msn.com",
        "aol.com",
        "proton.me",
        "tutanota.com",
        "zoho.com",
    }
)

KNOWN_COMPANY_DOMAINS: dict[str, str] = {
    "google": "google.com",
    "meta": "meta.com",
    "facebook": "meta.com",
    "amazon": "amazon.com",
    "apple": "apple.com",
    "microsoft": "microsoft.com",
    "netflix": "netflix.com",
    "stripe": "stripe.com",
    "airbnb": "airbnb.com",
    "uber": "uber.com",
    "lyft": "lyft.com",
    "dropbox": "dropbox.com",
    "slack": "slack.com",
    "salesforce": "salesforce.com",
    "shopify": "shopify.com",
    "square": "squareup.com",
    "twitter": "twitter.com",
    "x": "x.com",
    "linkedin": "linkedin.com",
    "github": "github.com",
    "gitlab": "gitlab.com",
    "cloudflare": "cloudflare.com",
    "datadog": "datadoghq.com",
    "snowflake": "snowflake.com",
    "databricks": "databricks.com",
    "palantir": "palantir.com",
    "coinbase": "coinbase.com",
    "robinhood": "robinhood.com",
    "plaid": "plaid.com",
    "figma": "figma.com",
    "notion": "notion.so",
    "vercel": "vercel.com",
    "supabase": "supabase.com",
    "anthropic": "anthropic.com",
    "openai": "openai.com",
    "nvidia": "nvidia.com",
    "tesla": "tesla.com",
    "spacex": "spacex.com",
    "twitch": "twitch.tv",
    "discord": "discord.com",
    "roblox": "roblox.com",
    "spotify": "spotify.com",
    "instacart": "instacart.com",
    "doordash": "doordash.com",
    "bytedance": "bytedance.com",
    "tiktok": "tiktok.com",
}

KNOWN_DOMAINS: frozenset[str] = frozenset(KNOWN_COMPANY_DOMAINS.values())

URL_RE = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+", re.IGNORECASE)
MENTION_RE = re.compile(
    r"\b(?:[a-zA-Z0-9][-a-zA-Z0-9]*\.)+(?:com|org|net|io|co|ai|app|dev|tech|cloud|so)\b",
    re.IGNORECASE,
)
EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")
_IPV4_RE = re.compile(r"^\d+\.\d+\.\d+\.\d+$")
_WWW_RE = re.compile(r"^(?:www\.)+")
_TRAILING_RE = re.compile(r"[./\s]+$")
_PROTOCOL_RE = re.compile(r"^https?://")

_URL_TRAILING_PUNCTUATION = ").,;:!?'\"]"
_HOSTNAME_RE = re.compile(r"^[a-z0-9.-]+$")

CONTEXT_RADIUS = 100


def strip_url_punctuation(url: str) -> str:
    """Drop sentence punctuation trailing a URL found in prose."""
    return url.strip().rstrip(_URL_TRAILING_PUNCTUATION)


def domain_from_url(url: str) -> str | None:
    """Lowercased hostname of ``url`` without ``www.``; ``None`` if it does not parse.

    Sentence punctuation trailing the URL (``(https://acme.io).``) is not part
    of the host.
    """
    try:
        hostname = urlsplit(strip_url_punctuation(url)).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    hostname = _WWW_RE.sub("", hostname.lower()).strip(".")
    if not hostname or not _HOSTNAME_RE.match(hostname):
        return None
    return hostname


def _normalize_once(value: str) -> str:
    normalized = value.lower().strip()
    if _PROTOCOL_RE.match(normalized):
        hostname = domain_from_url(normalized)
        if hostname is None:
            hostname = _PROTOCOL_RE.sub("", normalized).split("/")[0]
        normalized = hostname.strip()
    normalized = _WWW_RE.sub("", normalized).strip()
    return _TRAILING_RE.sub("", normalized)


def normalize_domain(value: str) -> str:
    """Lowercase, drop protocol, ``www.`` and trailing dots/slashes. Idempotent."""
    current = value
    while True:
        normalized = _normalize_once(current)
        if normalized == current:
            return normalized
        current = normalized


def is_company_domain(domain: str) -> bool:
    normalized = normalize_domain(domain)
    if normalized in DOMAIN_ALLOWLIST:
        return True
    if normalized in DOMAIN_BLOCKLIST:
        return False
    if any(normalized.endswith(f".{blocked}") for blocked in DOMAIN_BLOCKLIST):
        return False
    if "." not in normalized:
        return False
    if _IPV4_RE.match(normalized):
        return False
    return True


def is_known_company_domain(domain: str) -> bool:
    return normalize_domain(domain) in KNOWN_DOMAINS


def domain_to_company_name(domain: str) -> str:
    """``"acme-corp.com"`` -> ``"Acme Corp"``."""
    parts = domain.split(".")
    if len(parts) < 2:
        return domain
    name = ".".join(parts[:-1])
    return " ".join(part[:1].upper() + part[1:].lower() for part in re.split(r"[-_]", name))


def extract_domains_from_text(text: str) -> list[ExtractedDomain]:
    """URL, bare mention and email passes; the first pass to see a domain wins."""
    if not text:
        return []
    found: list[ExtractedDomain] = []
    seen: set[str] = set()

    def _add(domain: str | None, method: ExtractionMethod, confidence: float, position: int) -> None:
        if not domain or domain in seen or not is_company_domain(domain):
            return
        seen.add(domain)
        found.append(
            ExtractedDomain(
                domain=domain,
                method=method,
                confidence=confidence,
                context=snippet(text, position, position, radius=CONTEXT_RADIUS),
            )
        )

    for match in URL_RE.finditer(text):
        _add(domain_from_url(match.group(0)), ExtractionMethod.URL, 0.9, match.start())
    for match in MENTION_RE.finditer(text):
        # Email domains belong to the email pass and its freemail filter.
        if match.start() > 0 and text[match.start() - 1] == "@":
            continue
        _add(normalize_domain(match.group(0)), ExtractionMethod.MENTION, 0.7, match.start())
    for match in EMAIL_RE.finditer(text):
        domain = normalize_domain(match.group(1))
        if domain in FREEMAIL_DOMAINS:
            continue
        _add(domain, ExtractionMethod.EMAIL, 0.6, match.start())
    return found


def extract_domains_from_source(
    url: str | None,
    title: str | None,
    text: str | None,
) -> list[ExtractedDomain]:
    """Layer the source URL (0.95), title domains (+0.1, cap 0.95) and body domains."""
    found: list[ExtractedDomain] = []
    seen: set[str] = set()

    if url:
        url_domain = domain_from_url(url)
        if url_domain and is_company_domain(url_domain):
            seen.add(url_domain)
            found.append(
                ExtractedDomain(
                    domain=url_domain,
                    method=ExtractionMethod.URL,
                    confidence=0.95,
                    context=title or url,
                )
            )

    if title:
        for extracted in extract_domains_from_text(title):
            if extracted.domain in seen:
                continue
            seen.add(extracted.domain)
            boosted = min(extracted.confidence + 0.1, 0.95)
            found.append(extracted.model_copy(update={"confidence": boosted}))

    if text:
        for extracted in extract_domains_from_text(text):
            if extracted.domain not in seen:
                seen.add(extracted.domain)
                found.append(extracted)
    return found
