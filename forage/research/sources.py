"""Source normalization, domain-diverse selection and quality scoring.

Scores live in [0, 1] and are rounded to 3 decimals.  A source starts with a
base score from its domain and title, and is rescored once its page content
has been fetched.
"""

from __future__ import annotations

import re
from urllib.parse import urlsplit

from forage.models.schemas import SourceLink

# One DNS label: 1-63 word chars or hyphens, no leading/trailing hyphen.
# Non-ASCII letters pass so IDN hosts survive; whitespace and control chars do not.
_HOST_LABEL = re.compile(r"(?!-)[\w-]{1,63}(?<!-)")
_MAX_HOST_CHARS = 253

TRUSTED_DOMAINS = frozenset({
    "github.com",
    "docs.github.com",
    "developer.mozilla.org",
    "wikipedia.org",
    "arxiv.org",
    "openai.com",
    "npmjs.com",
    "pypi.org",
    "python.org",
})

# Base score weights
_TRUSTED_BONUS = 0.25
_BASELINE = 0.15
_TITLE_WEIGHT = 0.15
_TITLE_FULL_CHARS = 80

# Content rescoring weights
_CONTENT_WEIGHT = 0.4
_CONTENT_FULL_CHARS = 3_000
_SNIPPET_BONUS = 0.1
_TRUSTED_CONTENT_BONUS = 0.2
_HTTPS_BONUS = 0.1


def domain_of(url: str) -> str | None:
    """Lowercase hostname of ``url``, or None if it does not parse to a valid one."""
    try:
        host = urlsplit(url.strip()).hostname
    except ValueError:
        return None
    if not host:
        return None
    host = host.lower().rstrip(".")
    if len(host) > _MAX_HOST_CHARS or not all(_HOST_LABEL.fullmatch(label) for label in host.split(".")):
        return None
    return host


def is_trusted_domain(domain: str) -> bool:
    if domain in TRUSTED_DOMAINS:
        return True
    return any(domain.endswith(f".{trusted}") for trusted in TRUSTED_DOMAINS)


def _clamp(score: float) -> float:
    return round(min(max(score, 0.0), 1.0), 3)


def base_quality_score(domain: str, title: str) -> float:
    trusted = _TRUSTED_BONUS if is_trusted_domain(domain) else 0.0
    title_score = min(len(title.strip()) / _TITLE_FULL_CHARS, 1.0) * _TITLE_WEIGHT
    return _clamp(trusted + _BASELINE + title_score)


def normalize_source(url: str, title: str | None = None, snippet: str | None = None) -> SourceLink | None:
    """Build a scored SourceLink from a raw hit; None when the URL has no hostname."""
    if not url:
        return None
    domain = domain_of(url)
    if not domain:
        return None

    raw_title = (title or "").strip()
    return SourceLink(
        title=raw_title or url,
        url=url.strip(),
        domain=domain,
        snippet=(snippet or "").strip() or None,
        quality_score=base_quality_score(domain, raw_title),
    )


def dedupe_by_domain(sources: list[SourceLink], limit: int) -> list[SourceLink]:
    """Best-scored source per domain, highest first, until ``limit`` are picked."""
    picked: list[SourceLink] = []
    seen: set[str] = set()
    if limit <= 0:
        return picked
    for source in sorted(sources, key=lambda s: s.quality_score, reverse=True):
        if source.domain in seen:
            continue
        picked.append(source)
        seen.add(source.domain)
        if len(picked) >= limit:
            break
    return picked


def rescore_with_content(source: SourceLink) -> SourceLink:
    """Return a copy with content-aware bonuses added to the score."""
    content_len = len(source.content or "")
    bonus = min(content_len / _CONTENT_FULL_CHARS, 1.0) * _CONTENT_WEIGHT
    if source.snippet:
        bonus += _SNIPPET_BONUS
    if is_trusted_domain(source.domain):
        bonus += _TRUSTED_CONTENT_BONUS
    if source.is_https:
        bonus += _HTTPS_BONUS
    return source.model_copy(update={"quality_score": _clamp(source.quality_score + bonus)})


def rank_sources(sources: list[SourceLink], limit: int) -> list[SourceLink]:
    """Rescore enriched sources, sort by the new score, keep the top ``limit``."""
    rescored = [rescore_with_content(s) for s in sources]
    rescored.sort(key=lambda s: s.quality_score, reverse=True)
    return rescored[:limit]
