"""Infer an author's employer and social links from a profile bio."""

from __future__ import annotations

import html
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from app.core.text import strip_html
from app.models.listener import (
    CompanyInfo,
    CompanySignalSource,
    MatchResult,
    ProfileScoreFactors,
)
from app.models.sources import GitHubCompany, HNUser
from app.services.listener.domains import (
    EMAIL_RE,
    FREEMAIL_DOMAINS,
    KNOWN_COMPANY_DOMAINS,
    domain_from_url,
    domain_to_company_name,
    is_company_domain,
    normalize_domain,
    strip_url_punctuation,
)


@dataclass(frozen=True)
class CompanySignal:
    """One extractor's guess at the author's employer."""

    domain: str
    name: str
    confidence: float
    source: CompanySignalSource


@dataclass(frozen=True)
class SocialProfiles:
    linkedin_url: str | None = None
    twitter_handle: str | None = None
    github_username: str | None = None
    personal_website: str | None = None


SignalExtractor = Callable[[str, str], CompanySignal | None]

PROFILE_URL_RE = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)
PROFILE_MENTION_RE = re.compile(
    r"\b(?:[a-zA-Z0-9][-a-zA-Z0-9]*\.)+(?:com|org|net|io|co|ai|app|dev|tech|so|tv)\b",
    re.IGNORECASE,
)

SOCIAL_HOSTS = ("linkedin.com", "twitter.com", "x.com", "github.com", "news.ycombinator.com")
SKIPPED_MENTIONS = frozenset(
    {"github.com", "linkedin.com", "twitter.com", "x.com", "news.ycombinator.com", "ycombinator.com"}
)

_LINKEDIN_RE = re.compile(r"linkedin\.com/in/([a-zA-Z0-9_-]+)", re.IGNORECASE)
_TWITTER_URL_RE = re.compile(r"(?<![\w.-])(?:www\.)?(?:twitter|x)\.com/([a-zA-Z0-9_]+)", re.IGNORECASE)
_TWITTER_HANDLE_RE = re.compile(r"(?:^|\s)@([a-zA-Z][a-zA-Z0-9_]{1,14})(?=\s|$|[,.])")
_GITHUB_RE = re.compile(r"(?<![\w.-])(?:www\.)?github\.com/([a-zA-Z0-9_-]+)", re.IGNORECASE)
_GITHUB_RESERVED = frozenset({"pulls", "issues", "topics", "trending", "explore"})

_NAME = r"([A-Za-z0-9\s&.-]+?)(?:[,.\s]|$)"
_ROLES = r"(?:founder|co-founder|ceo|cto|vp|director|engineer|developer|designer|pm|product\s*manager)"

# Ordered cascade; the first pattern yielding a usable name wins.
WORK_PATTERNS: tuple[tuple[re.Pattern[str], float], ...] = (
    (re.compile(r"\(YC\s*[A-Z]?\d{2}\)\s*[-–—]?\s*" + _NAME, re.IGNORECASE), 0.8),
    (
        re.compile(r"([A-Z][\w&.-]*(?:\s+[A-Z][\w&.-]*){0,2})\s*\((?i:yc\s*[a-z]?\d{2})\)"),
        0.8,
    ),
    (re.compile(_ROLES + r"\s+(?:at|of|@)\s+" + _NAME, re.IGNORECASE), 0.7),
    (re.compile(r"(?:work(?:ing|s)?|employed)\s+(?:at|for|with)\s+" + _NAME, re.IGNORECASE), 0.6),
    (re.compile(r"(?:building|built|created?)\s+" + _NAME, re.IGNORECASE), 0.6),
    (
        re.compile(
            r"^([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)\s+(?:engineer|developer|pm|designer|founder|ceo|cto)\b",
            re.IGNORECASE,
        ),
        0.65,
    ),
    (re.compile(r"\b(?:team|company)[:\s]+" + _NAME, re.IGNORECASE), 0.6),
    (re.compile(r"(?:my|our)\s+(?:startup|company)\s+" + _NAME, re.IGNORECASE), 0.65),
    (
        re.compile(
            r"(?:engineer|developer|pm|ceo|cto|founder|designer)[^(]*\(([A-Za-z0-9\s&.-]+?)\)",
            re.IGNORECASE,
        ),
        0.65,
    ),
    (re.compile(r"(?:prev(?:iously)?|ex[-\s]?|former(?:ly)?)\s+(?:at|@)?\s*" + _NAME, re.IGNORECASE), 0.5),
)

SKIP_WORDS = frozenset(
    {"the", "a", "an", "my", "our", "things", "stuff", "something", "software", "web", "mobile", "apps"}
)
_PERSONAL_DOMAIN_PATTERNS = (
    re.compile(r"^[a-z]+\.[a-z]+$"),
    re.compile(r"blog"),
    re.compile(r"portfolio"),
    re.compile(r"personal"),
)


def _is_social_url(url: str) -> bool:
    host = domain_from_url(url) or ""
    return any(host == social or host.endswith(f".{social}") for social in SOCIAL_HOSTS)


def _company_slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", name.lower())


def extract_social_profiles(about: str | None) -> SocialProfiles:
    """LinkedIn, Twitter/X, GitHub and the first non-social URL found in a bio."""
    if not about:
        return SocialProfiles()
    text = html.unescape(about)

    linkedin = _LINKEDIN_RE.search(text)
    twitter_handle = None
    for pattern in (_TWITTER_URL_RE, _TWITTER_HANDLE_RE):
        found = pattern.search(text)
        if found and found.group(1).lower() != "mention":
            twitter_handle = found.group(1)
            break
    github = _GITHUB_RE.search(text)
    github_username = None
    if github and github.group(1).lower() not in _GITHUB_RESERVED:
        github_username = github.group(1)
    website = next(
        (
            strip_url_punctuation(url)
            for url in PROFILE_URL_RE.findall(text)
            if not _is_social_url(url)
        ),
        None,
    )
    return SocialProfiles(
        linkedin_url=f"https://www.linkedin.com/in/{linkedin.group(1)}" if linkedin else None,
        twitter_handle=twitter_handle,
        github_username=github_username,
        personal_website=website,
    )


def url_signal(raw: str, clean: str) -> CompanySignal | None:
    for url in PROFILE_URL_RE.findall(raw):
        if _is_social_url(url):
            continue
        domain = domain_from_url(url)
        if domain and is_company_domain(domain):
            return CompanySignal(domain, domain_to_company_name(domain), 0.9, CompanySignalSource.ABOUT_URL)
    return None


def email_signal(raw: str, clean: str) -> CompanySignal | None:
    for found in EMAIL_RE.finditer(clean):
        domain = normalize_domain(found.group(1))
        if domain and domain not in FREEMAIL_DOMAINS and is_company_domain(domain):
            return CompanySignal(
                domain, domain_to_company_name(domain), 0.85, CompanySignalSource.EMAIL_DOMAIN
            )
    return None


def resolve_company_domain(name: str, bio: str, confidence: float) -> tuple[str, float]:
    """Map a company name to a domain: known table, a matching bio domain, else ``slug.com``."""
    known = KNOWN_COMPANY_DOMAINS.get(name.lower())
    if known:
        return known, min(confidence + 0.15, 0.9)
    slug = _company_slug(name)
    for found in PROFILE_MENTION_RE.finditer(bio):
        domain = normalize_domain(found.group(0))
        if domain.split(".")[0] == slug:
            return domain, confidence
    return f"{slug}.com", confidence


def work_pattern_signal(raw: str, clean: str) -> CompanySignal | None:
    for pattern, confidence in WORK_PATTERNS:
        found = pattern.search(clean)
        if not found or not found.group(1):
            continue
        name = re.sub(r"[,.\s]+$", "", found.group(1).strip())
        if len(name) <= 2 or name.lower() in SKIP_WORDS or not _company_slug(name):
            continue
        domain, resolved_confidence = resolve_company_domain(name, clean, confidence)
        if not is_company_domain(domain):
            return None
        return CompanySignal(domain, name, resolved_confidence, CompanySignalSource.ABOUT_TEXT)
    return None


def domain_mention_signal(raw: str, clean: str) -> CompanySignal | None:
    for found in PROFILE_MENTION_RE.finditer(clean):
        domain = normalize_domain(found.group(0))
        if (
            domain
            and domain not in SKIPPED_MENTIONS
            and domain not in FREEMAIL_DOMAINS
            and is_company_domain(domain)
        ):
            return CompanySignal(domain, domain_to_company_name(domain), 0.7, CompanySignalSource.ABOUT_TEXT)
    return None


SIGNAL_EXTRACTORS: tuple[SignalExtractor, ...] = (
    url_signal,
    email_signal,
    work_pattern_signal,
    domain_mention_signal,
)


def collect_signals(
    about: str, extractors: Sequence[SignalExtractor] = SIGNAL_EXTRACTORS
) -> list[CompanySignal]:
    raw = html.unescape(about)
    clean = strip_html(about)
    signals = []
    for extractor in extractors:
        signal = extractor(raw, clean)
        if signal is not None:
            signals.append(signal)
    return signals


def pick_best_signal(signals: Sequence[CompanySignal]) -> CompanySignal | None:
    """Highest confidence after a +0.1 boost (cap 0.95) for domains named by several signals."""
    counts: dict[str, int] = {}
    for signal in signals:
        counts[signal.domain] = counts.get(signal.domain, 0) + 1
    best: CompanySignal | None = None
    for signal in signals:
        adjusted = signal
        if counts[signal.domain] > 1:
            adjusted = replace(signal, confidence=min(0.95, signal.confidence + 0.1))
        if best is None or adjusted.confidence > best.confidence:
            best = adjusted
    return best


def extract_company_from_profile(
    user: HNUser, extractors: Sequence[SignalExtractor] = SIGNAL_EXTRACTORS
) -> CompanyInfo:
    about = user.about or ""
    social = extract_social_profiles(about)
    info = CompanyInfo(
        username=user.id,
        raw_about=user.about,
        linkedin_url=social.linkedin_url,
        twitter_handle=social.twitter_handle,
        github_username=social.github_username,
        personal_website=social.personal_website,
    )
    if not about:
        return info
    best = pick_best_signal(collect_signals(about, extractors))
    if best is None:
        return info
    return info.model_copy(
        update={
            "company_domain": best.domain,
            "company_name": best.name,
            "confidence": round(best.confidence, 4),
            "source": best.source,
        }
    )


def enrich_company_info(user: HNUser, info: CompanyInfo) -> CompanyInfo:
    """Fill social links missing from ``info`` with those found in the bio."""
    social = extract_social_profiles(user.about)
    return info.model_copy(
        update={
            "linkedin_url": info.linkedin_url or social.linkedin_url,
            "github_username": info.github_username or social.github_username,
            "twitter_handle": info.twitter_handle or social.twitter_handle,
            "personal_website": info.personal_website or social.personal_website,
        }
    )


def cross_validate_company_info(info: CompanyInfo, github: GitHubCompany | None) -> CompanyInfo:
    if github is None or not github.domain:
        return info
    github_domain = github.domain.lower()
    hn_domain = (info.company_domain or "").lower()
    if hn_domain and (hn_domain == github_domain or github_domain.split(".")[0] in hn_domain):
        return info.model_copy(update={"confidence": min(0.95, round(info.confidence + 0.15, 4))})
    if not hn_domain:
        return info.model_copy(
            update={
                "company_domain": github_domain,
                "company_name": github.company,
                "confidence": 0.7,
                "source": CompanySignalSource.GITHUB,
            }
        )
    return info


def calculate_user_credibility(user: HNUser, *, now: datetime | None = None) -> float:
    """Multiplier in [0.5, 1.2] from karma and account age."""
    score = 1.0
    if user.karma >= 10000:
        score += 0.15
    elif user.karma >= 5000:
        score += 0.1
    elif user.karma >= 1000:
        score += 0.05
    elif user.karma < 50:
        score -= 0.2
    elif user.karma < 100:
        score -= 0.1

    created = user.created_at
    if created is not None:
        current = now or datetime.now(timezone.utc)
        age_years = (current - created).total_seconds() / (365 * 24 * 3600)
        if age_years >= 10:
            score += 0.1
        elif age_years >= 5:
            score += 0.05
        elif age_years < 1:
            score -= 0.1
    return max(0.5, min(1.2, round(score, 4)))


def is_quality_extraction(info: CompanyInfo, user: HNUser, min_confidence: float = 0.5) -> bool:
    if not info.company_domain:
        return False
    if info.confidence < min_confidence:
        return False
    if user.karma < 10:
        return False
    domain = info.company_domain.lower()
    looks_personal = any(pattern.search(domain) for pattern in _PERSONAL_DOMAIN_PATTERNS)
    return not (looks_personal and info.confidence < 0.8)


def score_profile_discovery(
    info: CompanyInfo,
    user: HNUser,
    story_relevance: float,
    *,
    now: datetime | None = None,
) -> tuple[int, ProfileScoreFactors]:
    """Score a profile-derived discovery; ``story_relevance`` is on a 0-100 scale."""
    credibility = calculate_user_credibility(user, now=now)
    factors = ProfileScoreFactors(
        extraction_confidence=round(info.confidence * 35),
        user_credibility=round((credibility - 0.5) / 0.7 * 25),
        story_relevance=round(min(100.0, max(0.0, story_relevance)) * 0.25),
        social_presence=(10 if info.linkedin_url else 0) + (5 if info.github_username else 0),
    )
    return factors.total, factors


_SOURCE_PHRASES = {
    CompanySignalSource.ABOUT_URL: "Company identified from profile URL.",
    CompanySignalSource.EMAIL_DOMAIN: "Company identified from email address.",
    CompanySignalSource.GITHUB: "Company identified from GitHub profile.",
}


def build_trigger_text(
    username: str,
    info: CompanyInfo,
    story_title: str,
    comment_text: str,
    match: MatchResult,
) -> str:
    company = (
        f"{info.company_name} ({info.company_domain})" if info.company_name else info.company_domain
    )
    parts = [f'HN user "{username}" works at {company}.']
    if info.source in _SOURCE_PHRASES:
        parts.append(_SOURCE_PHRASES[info.source])
    links = [
        label
        for label, present in (
            ("LinkedIn", info.linkedin_url),
            ("GitHub", info.github_username),
            ("Twitter", info.twitter_handle),
        )
        if present
    ]
    if links:
        parts.append(f"Has {', '.join(links)} presence.")
    parts.append(f'Commented on: "{story_title}"')
    if match.matches:
        parts.append(f"Thread matched keywords: {', '.join(match.keywords[:3])}")
    if comment_text and len(comment_text) > 20:
        parts.append(f'Comment: "{comment_text[:150].strip()}..."')
    return " ".join(parts)
